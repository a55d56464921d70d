"""
Tests unitaires pour la session de présences côté écran.
Le serveur est simulé par httpx.MockTransport ; chaque test pilote sa boucle via asyncio.run.
Couverture : chargement partiel, save idempotent, repli batch → unitaire,
échecs partiels, 4xx sans repli, verrou en vol, abonnements.
"""

import asyncio
import json
from datetime import date

import httpx
import pytest

from app.client.api import AttendanceApiClient, AttendanceApiError
from app.client.attendance_session import (
    AttendanceSaveError,
    AttendanceSession,
    ClassInfo,
    StudentInfo,
)

DAY = "2026-03-02"
BATCH_PATH = "/api/v1/attendance/batch"
SINGLE_PATH = "/api/v1/attendance"

STUDENTS = [
    StudentInfo(id="s1", class_id="c1", first_name="Amina"),
    StudentInfo(id="s2", class_id="c1", first_name="Jonas"),
    StudentInfo(id="s3", class_id="c2", first_name="Lea"),
]


# --- Helpers ---

class FakeServer:
    """Enregistre les appels et délègue la réponse à des règles par chemin."""

    def __init__(self, batch_status=201, batch_keep=None, failing_students=(), failing_classes=(), roster=None):
        self.calls = []
        self.batch_status = batch_status
        self.batch_keep = batch_keep
        self.failing_students = set(failing_students)
        self.failing_classes = set(failing_classes)
        self.roster = roster or {}
        self.class_attendance = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        path = request.url.path

        if request.method == "GET" and path.endswith("/roster"):
            return httpx.Response(200, json=self.roster)

        if request.method == "GET":
            class_id = request.url.params["classId"]
            if class_id in self.failing_classes:
                return httpx.Response(500, json={"error": "Échec de la lecture des présences."})
            return httpx.Response(200, json={"attendance": self.class_attendance.get(class_id, [])})

        body = json.loads(request.content)
        if path == BATCH_PATH:
            if self.batch_status >= 400:
                return httpx.Response(self.batch_status, json={"error": "lot refusé"})
            records = body["records"]
            if self.batch_keep is not None:
                records = [r for r in records if r["student_id"] in self.batch_keep]
            return httpx.Response(201, json={"attendance": records, "message": "ok", "count": len(records)})

        if body["student_id"] in self.failing_students:
            return httpx.Response(500, json={"error": "Échec de l'enregistrement des présences."})
        return httpx.Response(201, json={"attendance": body, "message": "Présence enregistrée."})

    def paths(self, method="POST"):
        return [p for m, p in self.calls if m == method]


def make_session(handler, classes=("c1", "c2"), students=STUDENTS) -> AttendanceSession:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    api = AttendanceApiClient(http=http, token="jeton")
    return AttendanceSession(api, [ClassInfo(id=c) for c in classes], students)


def run(coro):
    return asyncio.run(coro)


# ============================================================
# Chargement
# ============================================================

def test_chargement_fusionne_les_classes():
    server = FakeServer()
    server.class_attendance = {
        "c1": [{"student_id": "s1", "status": "present"}, {"student_id": "s2", "status": "late"}],
        "c2": [{"student_id": "s3", "status": "present"}],
    }
    session = make_session(server)

    run(session.load(DAY))

    state = session.state
    assert state.attendance == {"s1": True, "s2": False, "s3": True}
    assert state.saved_attendance == state.attendance
    assert state.date == DAY
    assert state.is_loading is False
    assert state.has_unsaved_changes is False


def test_chargement_partiel_si_une_classe_echoue():
    server = FakeServer(failing_classes={"c2"})
    server.class_attendance = {"c1": [{"student_id": "s1", "status": "present"}]}
    session = make_session(server)

    run(session.load(date(2026, 3, 2)))

    assert session.state.attendance == {"s1": True}
    assert session.state.saved_attendance == {"s1": True}
    assert session.state.date == DAY


def test_chargement_remplace_l_etat_precedent():
    server = FakeServer()
    session = make_session(server)
    session.update_attendance("s1", True)

    run(session.load(DAY))

    assert session.state.attendance == {}
    assert session.state.has_unsaved_changes is False


# ============================================================
# Enregistrement
# ============================================================

def test_save_sans_modification_aucune_ecriture():
    server = FakeServer()
    session = make_session(server)

    run(session.save(target_date=DAY))

    assert server.calls == []


def test_save_batch_unique():
    server = FakeServer()
    session = make_session(server)
    session.update_attendance("s1", True)

    run(session.save(target_date=DAY))

    assert server.paths() == [BATCH_PATH]
    assert session.state.saved_attendance == {"s1": True}
    assert session.state.has_unsaved_changes is False


def test_save_idempotent():
    server = FakeServer()
    session = make_session(server)
    session.update_attendance("s1", True)

    run(session.save(target_date=DAY))
    run(session.save(target_date=DAY))

    assert server.paths() == [BATCH_PATH]


def test_save_repli_unitaire_apres_echec_batch():
    """Batch 500 → un upsert par élève, lancés après la fin du batch."""
    server = FakeServer(batch_status=500)
    session = make_session(server)
    session.update_attendance("s1", True)
    session.update_attendance("s2", True)

    run(session.save(target_date=DAY))

    posts = server.paths()
    assert posts[0] == BATCH_PATH
    assert posts[1:] == [SINGLE_PATH, SINGLE_PATH]
    assert session.state.saved_attendance == {"s1": True, "s2": True}
    assert session.state.has_unsaved_changes is False


def test_save_repli_si_serveur_injoignable():
    singles = []

    def handler(request):
        if request.url.path == BATCH_PATH:
            raise httpx.ConnectError("réseau coupé", request=request)
        singles.append(json.loads(request.content))
        return httpx.Response(201, json={"attendance": singles[-1]})

    session = make_session(handler)
    session.update_attendance("s3", True)

    run(session.save(target_date=DAY))

    assert [s["student_id"] for s in singles] == ["s3"]
    assert session.state.saved_attendance == {"s3": True}


def test_save_echec_unitaire_partiel():
    """Seuls les élèves confirmés avancent ; les autres restent non enregistrés."""
    server = FakeServer(batch_status=503, failing_students={"s2"})
    session = make_session(server)
    session.update_attendance("s1", True)
    session.update_attendance("s2", True)

    with pytest.raises(AttendanceSaveError) as exc_info:
        run(session.save(target_date=DAY))

    assert exc_info.value.failed == ["s2"]
    state = session.state
    assert state.saved_attendance == {"s1": True}
    assert state.attendance == {"s1": True, "s2": True}
    assert state.has_unsaved_changes is True
    assert state.is_saving is False


def test_save_batch_refuse_4xx_sans_repli():
    server = FakeServer(batch_status=403)
    session = make_session(server)
    session.update_attendance("s1", True)

    with pytest.raises(AttendanceSaveError) as exc_info:
        run(session.save(target_date=DAY))

    assert server.paths() == [BATCH_PATH]
    assert exc_info.value.failed == ["s1"]
    assert isinstance(exc_info.value.__cause__, AttendanceApiError)
    assert session.state.saved_attendance == {}
    assert session.state.is_saving is False


def test_save_batch_reponse_partielle():
    """Lignes absentes du retour batch : échec signalé, pas de repli unitaire."""
    server = FakeServer(batch_keep={"s1"})
    session = make_session(server)
    session.update_attendance("s1", True)
    session.update_attendance("s2", True)

    with pytest.raises(AttendanceSaveError) as exc_info:
        run(session.save(target_date=DAY))

    assert server.paths() == [BATCH_PATH]
    assert exc_info.value.failed == ["s2"]
    assert session.state.saved_attendance == {"s1": True}


def test_save_contenu_des_enregistrements():
    sent = []

    def handler(request):
        sent.extend(json.loads(request.content)["records"])
        return httpx.Response(201, json={"attendance": sent})

    session = make_session(handler)
    session.update_attendance("s1", True)
    session.update_attendance("s3", True)
    session.update_attendance("s3", False)

    run(session.save({"s2": True}, target_date=DAY))

    by_student = {r["student_id"]: r for r in sent}
    assert set(by_student) == {"s1", "s2"}
    assert by_student["s1"] == {"student_id": "s1", "status": "present", "date": DAY, "class_id": "c1"}
    assert by_student["s2"]["status"] == "present"


def test_save_absence_apres_presence_confirmee():
    sent = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"attendance": [{"student_id": "s1", "status": "present"}]})
        sent.extend(json.loads(request.content)["records"])
        return httpx.Response(201, json={"attendance": sent})

    session = make_session(handler, classes=("c1",))
    run(session.load(DAY))
    session.update_attendance("s1", False)

    run(session.save(target_date=DAY))

    assert sent == [{"student_id": "s1", "status": "absent", "date": DAY, "class_id": "c1"}]
    assert session.state.saved_attendance == {"s1": False}


def test_save_date_du_jour_par_defaut():
    sent = []

    def handler(request):
        sent.extend(json.loads(request.content)["records"])
        return httpx.Response(201, json={"attendance": sent})

    session = make_session(handler)
    session.update_attendance("s1", True)

    run(session.save())

    assert sent[0]["date"] == date.today().isoformat()


def test_save_en_vol_refuse_second_appel():
    batches = []

    async def handler(request):
        batches.append(request.url.path)
        await asyncio.sleep(0.01)
        return httpx.Response(201, json={"attendance": json.loads(request.content)["records"]})

    session = make_session(handler)
    session.update_attendance("s1", True)

    async def scenario():
        await asyncio.gather(session.save(target_date=DAY), session.save(target_date=DAY))

    run(scenario())

    assert batches == [BATCH_PATH]
    assert session.state.saved_attendance == {"s1": True}


def test_save_en_vol_conserve_les_modifications_du_second_appel():
    """Le second save est refusé, mais ses modifications restent en attente."""
    sent = []

    async def handler(request):
        records = json.loads(request.content)["records"]
        sent.append([r["student_id"] for r in records])
        await asyncio.sleep(0.01)
        return httpx.Response(201, json={"attendance": records})

    session = make_session(handler)
    session.update_attendance("s1", True)

    async def scenario():
        await asyncio.gather(session.save(target_date=DAY), session.save({"s2": True}, target_date=DAY))

    run(scenario())

    state = session.state
    assert sent == [["s1"]]
    assert state.attendance == {"s1": True, "s2": True}
    assert state.saved_attendance == {"s1": True}
    assert state.has_unsaved_changes is True
    assert session.pending_changes() == {"s2": True}

    run(session.save(target_date=DAY))

    assert sent == [["s1"], ["s2"]]
    assert session.state.has_unsaved_changes is False


# ============================================================
# Modifications locales et abonnements
# ============================================================

def test_tous_presents_par_classe():
    session = make_session(FakeServer())
    session.mark_all_present("c1")

    assert session.state.attendance == {"s1": True, "s2": True}
    assert session.pending_changes() == {"s1": True, "s2": True}


def test_tous_presents():
    session = make_session(FakeServer())
    session.mark_all_present()

    assert session.state.attendance == {"s1": True, "s2": True, "s3": True}


def test_abonnement_et_desabonnement():
    session = make_session(FakeServer())
    snapshots = []
    unsubscribe = session.subscribe(snapshots.append)

    session.update_attendance("s1", True)
    unsubscribe()
    session.update_attendance("s2", True)

    assert len(snapshots) == 1
    assert snapshots[0].attendance == {"s1": True}
    assert snapshots[0].has_unsaved_changes is True


def test_etat_expose_est_une_copie():
    session = make_session(FakeServer())
    state = session.state
    state.attendance["s1"] = True

    assert session.state.attendance == {}


def test_save_notifie_debut_et_fin():
    server = FakeServer()
    session = make_session(server)
    session.update_attendance("s1", True)
    flags = []
    session.subscribe(lambda s: flags.append(s.is_saving))

    run(session.save(target_date=DAY))

    assert flags == [True, False]


# ============================================================
# Amorçage
# ============================================================

def test_bootstrap_depuis_roster():
    server = FakeServer(roster={
        "classes": [{"id": "c1", "name": "CP-A", "code": None}],
        "students": [
            {"id": "s1", "class_id": "c1", "first_name": "Amina", "last_name": None},
            {"id": "s9", "class_id": None, "first_name": "Noé", "last_name": "B."},
        ],
    })
    http = httpx.AsyncClient(transport=httpx.MockTransport(server), base_url="http://test")

    session = run(AttendanceSession.bootstrap(AttendanceApiClient(http=http)))
    session.mark_all_present("c1")

    assert server.calls == [("GET", "/api/v1/attendance/roster")]
    assert session.state.attendance == {"s1": True}


def test_client_erreur_api_porte_le_message():
    def handler(request):
        return httpx.Response(403, json={"error": "Accès refusé : rôle non autorisé."})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    api = AttendanceApiClient(http=http, token="jeton")

    with pytest.raises(AttendanceApiError) as exc_info:
        run(api.fetch_roster())

    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Accès refusé : rôle non autorisé."
    assert exc_info.value.is_server_error is False
