# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme attendance.recorded_by → users.id échouent
# avec NoReferencedTableError si user.py n'est pas chargé avant attendance.py.

from app.models.organization import Organization  # noqa: F401  (doit précéder user)
from app.models.user import User  # noqa: F401
from app.models.school_class import SchoolClass, ClassTeacher  # noqa: F401
from app.models.student import Student  # noqa: F401
from app.models.attendance import AttendanceRecord  # noqa: F401
