"""
Session de présences côté écran : état optimiste + protocole d'enregistrement.

Deux tables parallèles, détenues par une seule session :
- attendance        : student_id → présent ? (état de travail, modifié à chaque clic)
- saved_attendance  : student_id → présent ? (dernier état confirmé par le serveur)
Seule la session les modifie ; les observateurs s'abonnent et reçoivent une copie.

Enregistrement (save) :
1. Élèves dont le statut effectif diffère de saved_attendance ; aucun → aucune écriture
2. Une présence par élève, pour le jour cible (aujourd'hui, calculé une fois par appel)
3. Un seul appel batch (upsert sur student_id + date)
4. Batch en échec de transport ou 5xx → un upsert par élève, en parallèle, lancé
   seulement après la fin du batch ; 4xx → échec signalé, pas de repli
5. saved_attendance n'avance que pour les élèves confirmés ; le reste reste « non enregistré »
   et AttendanceSaveError liste les élèves en échec
Un save pendant un autre save est refusé (verrou en vol) ; ses modifications restent en attente.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import httpx

from app.client.api import AttendanceApiClient, AttendanceApiError

logger = logging.getLogger(__name__)

Day = Union[str, date]


@dataclass(frozen=True)
class ClassInfo:
    id: str
    name: str = ""


@dataclass(frozen=True)
class StudentInfo:
    id: str
    class_id: Optional[str] = None
    first_name: str = ""
    last_name: Optional[str] = None


@dataclass
class AttendanceState:
    attendance: Dict[str, bool] = field(default_factory=dict)
    saved_attendance: Dict[str, bool] = field(default_factory=dict)
    date: Optional[str] = None
    is_loading: bool = False
    is_saving: bool = False

    @property
    def has_unsaved_changes(self) -> bool:
        keys = set(self.attendance) | set(self.saved_attendance)
        return any(
            self.attendance.get(k, False) != self.saved_attendance.get(k, False) for k in keys
        )

    def copy(self) -> "AttendanceState":
        return replace(
            self,
            attendance=dict(self.attendance),
            saved_attendance=dict(self.saved_attendance),
        )


class AttendanceSaveError(Exception):
    """Enregistrement refusé ou incomplet. `failed` liste les élèves non confirmés."""

    def __init__(self, message: str, failed: Iterable[str]):
        super().__init__(message)
        self.failed = list(failed)


def _as_day(value: Day) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class AttendanceSession:

    def __init__(
        self,
        api: AttendanceApiClient,
        classes: Iterable[ClassInfo],
        students: Iterable[StudentInfo],
    ):
        self._api = api
        self._classes = list(classes)
        self._students = {s.id: s for s in students}
        self._state = AttendanceState()
        self._subscribers: List[Callable[[AttendanceState], None]] = []

    @classmethod
    async def bootstrap(cls, api: AttendanceApiClient) -> "AttendanceSession":
        """Construit la session à partir du roster de l'appelant."""
        roster = await api.fetch_roster()
        classes = [ClassInfo(id=str(c["id"]), name=c.get("name", "")) for c in roster.get("classes", [])]
        students = [
            StudentInfo(
                id=str(s["id"]),
                class_id=str(s["class_id"]) if s.get("class_id") else None,
                first_name=s.get("first_name", ""),
                last_name=s.get("last_name"),
            )
            for s in roster.get("students", [])
        ]
        return cls(api, classes, students)

    # --- observation ---

    @property
    def state(self) -> AttendanceState:
        return self._state.copy()

    def subscribe(self, callback: Callable[[AttendanceState], None]) -> Callable[[], None]:
        """Abonne un observateur ; retourne la fonction de désabonnement."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self._state.copy()
        for callback in list(self._subscribers):
            callback(snapshot)

    # --- chargement ---

    async def load(self, day: Day) -> None:
        """
        Charge les présences du jour, un appel par classe, en parallèle.
        Une classe en échec n'apporte rien mais n'interrompt pas le chargement.
        """
        day = _as_day(day)
        self._state.is_loading = True
        self._notify()
        try:
            results = await asyncio.gather(
                *(self._api.fetch_class_attendance(c.id, day) for c in self._classes),
                return_exceptions=True,
            )
            merged: Dict[str, bool] = {}
            for school_class, result in zip(self._classes, results):
                if isinstance(result, Exception):
                    logger.warning("Présences de la classe %s non chargées : %s", school_class.id, result)
                    continue
                if isinstance(result, BaseException):
                    raise result
                for record in result:
                    merged[str(record["student_id"])] = record.get("status") == "present"

            self._state.attendance = dict(merged)
            self._state.saved_attendance = dict(merged)
            self._state.date = day
            logger.info("Présences chargées pour %s : %d élèves", day, len(merged))
        finally:
            self._state.is_loading = False
            self._notify()

    # --- modifications locales ---

    def update_attendance(self, student_id: str, is_present: bool) -> None:
        self._state.attendance[student_id] = is_present
        self._notify()

    def mark_all_present(self, class_id: Optional[str] = None) -> None:
        for student in self._students.values():
            if class_id is None or student.class_id == class_id:
                self._state.attendance[student.id] = True
        self._notify()

    def pending_changes(self) -> Dict[str, bool]:
        """Élèves dont le statut courant diffère du dernier état confirmé."""
        keys = set(self._students) | set(self._state.attendance) | set(self._state.saved_attendance)
        return {
            sid: self._state.attendance.get(sid, False)
            for sid in sorted(keys)
            if self._state.attendance.get(sid, False) != self._state.saved_attendance.get(sid, False)
        }

    # --- enregistrement ---

    async def save(self, changes: Optional[Dict[str, bool]] = None, target_date: Optional[Day] = None) -> None:
        for student_id, is_present in (changes or {}).items():
            self._state.attendance[str(student_id)] = bool(is_present)

        if self._state.is_saving:
            # Les modifications restent dans attendance, donc « non enregistrées »
            logger.warning("Enregistrement déjà en cours, modifications conservées pour le prochain save")
            if changes:
                self._notify()
            return

        day = _as_day(target_date) if target_date else date.today().isoformat()

        pending = self.pending_changes()
        if not pending:
            logger.debug("Aucune modification de présence à enregistrer")
            return

        records = [self._record(sid, is_present, day) for sid, is_present in pending.items()]
        self._state.is_saving = True
        self._notify()
        try:
            confirmed, failed = await self._write(records)
            for student_id in confirmed:
                if student_id in pending:
                    self._state.saved_attendance[student_id] = pending[student_id]
        finally:
            self._state.is_saving = False
            self._notify()

        if failed:
            logger.error("Présences non enregistrées pour %d élève(s)", len(failed))
            raise AttendanceSaveError(
                f"Échec de l'enregistrement pour {len(failed)} élève(s).", failed
            )
        logger.info("Présences enregistrées pour %d élève(s)", len(confirmed))

    def _record(self, student_id: str, is_present: bool, day: str) -> Dict[str, Any]:
        student = self._students.get(student_id)
        return {
            "student_id": student_id,
            "status": "present" if is_present else "absent",
            "date": day,
            "class_id": student.class_id if student else None,
        }

    async def _write(self, records: List[Dict[str, Any]]) -> Tuple[Set[str], List[str]]:
        """Batch d'abord ; repli unitaire seulement si le transport ou le serveur a échoué."""
        try:
            written = await self._api.upsert_batch(records)
        except AttendanceApiError as exc:
            if not exc.is_server_error:
                raise AttendanceSaveError(
                    f"Lot refusé par le serveur : {exc.message}",
                    [r["student_id"] for r in records],
                ) from exc
            logger.warning("Batch en échec (%s), repli sur %d enregistrements unitaires", exc, len(records))
        except httpx.HTTPError as exc:
            logger.warning("Batch injoignable (%s), repli sur %d enregistrements unitaires", exc, len(records))
        else:
            # Lignes absentes du retour : refusées par le serveur, pas de repli unitaire
            confirmed = {str(r["student_id"]) for r in written}
            failed = [r["student_id"] for r in records if r["student_id"] not in confirmed]
            return confirmed, failed

        return await self._write_individually(records)

    async def _write_individually(self, records: List[Dict[str, Any]]) -> Tuple[Set[str], List[str]]:
        results = await asyncio.gather(
            *(self._api.upsert_one(record) for record in records),
            return_exceptions=True,
        )
        confirmed: Set[str] = set()
        failed: List[str] = []
        for record, result in zip(records, results):
            if isinstance(result, Exception):
                logger.warning("Présence de l'élève %s non enregistrée : %s", record["student_id"], result)
                failed.append(record["student_id"])
            else:
                confirmed.add(record["student_id"])
        return confirmed, failed
