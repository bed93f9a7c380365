"""
Tests unitaires pour la file offline côté client et le client de synchronisation.
Couverture : dédoublonnage à l'ajout, drain, issues terminales, backoff
exponentiel, purge, persistance SQLite, client httpx (MockTransport) et
parcours complet contre l'API.
"""

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.client.offline_queue import MemoryQueueStorage, OfflineQueue, SqliteQueueStorage
from app.client.sync_client import SYNC_PATH, SyncClient, SyncRequestRejected, SyncTransportError
from app.schemas.sync import OfflineSubmission, SyncResponse, SyncResult

NOW = datetime(2026, 5, 25, 18, 0)


# --- Helpers ---

def make_submission(**kwargs) -> OfflineSubmission:
    payload = {
        "offline_id": uuid.uuid4(),
        "event_id": uuid.uuid4(),
        "subject_id": uuid.uuid4(),
        "method": "nfc",
        "token_uid": "ST-001",
        "timestamp": datetime(2026, 5, 25, 9, 0),
    }
    payload.update(kwargs)
    return OfflineSubmission(**payload)


def respond_with(outcome="confirmed", skip=()):
    """Faux `send` : renvoie `outcome` pour chaque soumission sauf celles de `skip`."""
    calls = []

    def send(submissions):
        calls.append(submissions)
        results = [
            SyncResult(offline_id=str(s.offline_id), outcome=outcome)
            for s in submissions
            if s.offline_id not in skip
        ]
        return SyncResponse(
            results=results,
            total_received=len(submissions),
            total_confirmed=len(results) if outcome == "confirmed" else 0,
            total_already_processed=len(results) if outcome == "already_processed" else 0,
            total_conflicts=len(results) if outcome == "conflict" else 0,
            total_rejected=len(results) if outcome == "rejected" else 0,
        )

    send.calls = calls
    return send


def failing_send(submissions):
    raise SyncTransportError("réseau indisponible")


# ============================================================
# enqueue / pending
# ============================================================

def test_enqueue_dedoublonne_sur_offline_id():
    queue = OfflineQueue()
    submission = make_submission()

    first = queue.enqueue(submission)
    second = queue.enqueue(submission)

    assert first is second
    assert queue.status(now=NOW)["total"] == 1


def test_pending_dans_l_ordre_d_ajout():
    queue = OfflineQueue()
    submissions = [make_submission() for _ in range(3)]
    for s in submissions:
        queue.enqueue(s)

    assert [e.offline_id for e in queue.pending(now=NOW)] == [s.offline_id for s in submissions]


# ============================================================
# drain
# ============================================================

def test_drain_vide_n_appelle_pas_le_serveur():
    queue = OfflineQueue()
    send = respond_with()

    report = queue.drain(send, now=NOW)

    assert report.sent == 0
    assert send.calls == []


@pytest.mark.parametrize("outcome", ["confirmed", "already_processed", "conflict", "rejected"])
def test_issues_terminales_confirment_l_entree(outcome):
    queue = OfflineQueue()
    queue.enqueue(make_submission())

    report = queue.drain(respond_with(outcome), now=NOW)

    assert report.confirmed == 1
    assert report.outcomes == {outcome: 1}
    assert queue.pending(now=NOW) == []
    entry = queue.storage.entries()[0]
    assert entry.confirmed is True
    assert entry.outcome == outcome


def test_erreur_transport_garde_les_entrees():
    queue = OfflineQueue(backoff_base_seconds=5)
    queue.enqueue(make_submission())
    queue.enqueue(make_submission())

    report = queue.drain(failing_send, now=NOW)

    assert report.retry_later == 2
    assert report.confirmed == 0
    entries = queue.storage.entries()
    assert all(not e.confirmed for e in entries)
    assert all(e.attempts == 1 for e in entries)
    assert all(e.next_attempt_at == NOW + timedelta(seconds=5) for e in entries)
    assert entries[0].last_error == "réseau indisponible"


def test_backoff_retarde_le_prochain_envoi():
    queue = OfflineQueue(backoff_base_seconds=5)
    queue.enqueue(make_submission())
    queue.drain(failing_send, now=NOW)

    assert queue.pending(now=NOW + timedelta(seconds=4)) == []
    assert len(queue.pending(now=NOW + timedelta(seconds=5))) == 1
    assert queue.status(now=NOW)["waiting_backoff"] == 1


def test_backoff_exponentiel_plafonne():
    queue = OfflineQueue(backoff_base_seconds=5, backoff_max_seconds=60)

    assert queue.backoff_delay(1) == timedelta(seconds=5)
    assert queue.backoff_delay(2) == timedelta(seconds=10)
    assert queue.backoff_delay(4) == timedelta(seconds=40)
    assert queue.backoff_delay(5) == timedelta(seconds=60)
    assert queue.backoff_delay(30) == timedelta(seconds=60)


def test_issue_absente_reste_en_file():
    queue = OfflineQueue()
    answered, forgotten = make_submission(), make_submission()
    queue.enqueue(answered)
    queue.enqueue(forgotten)

    report = queue.drain(respond_with(skip={forgotten.offline_id}), now=NOW)

    assert report.confirmed == 1
    assert report.retry_later == 1
    assert [e.offline_id for e in queue.storage.entries() if not e.confirmed] == [forgotten.offline_id]


def test_entrees_confirmees_jamais_renvoyees():
    queue = OfflineQueue()
    queue.enqueue(make_submission())
    send = respond_with()
    queue.drain(send, now=NOW)

    queue.drain(send, now=NOW + timedelta(hours=1))

    assert len(send.calls) == 1


def rejecting_send(poison_id):
    """Faux `send` : refuse (422) tout batch contenant `poison_id`, confirme les autres."""
    accept = respond_with()
    calls = []

    def send(submissions):
        calls.append(submissions)
        if any(s.offline_id == poison_id for s in submissions):
            raise SyncRequestRejected(422, [{"msg": "invalide"}])
        return accept(submissions)

    send.calls = calls
    return send


def test_batch_refuse_est_scinde():
    queue = OfflineQueue(backoff_base_seconds=5, max_batch_size=10)
    poison, healthy = make_submission(), make_submission()
    queue.enqueue(poison)
    queue.enqueue(healthy)

    report = queue.drain(rejecting_send(poison.offline_id), now=NOW)

    assert report.retry_later == 2
    assert report.confirmed == 0
    assert queue.max_batch_size == 1
    entries = queue.storage.entries()
    assert all(not e.confirmed for e in entries)
    assert all(e.attempts == 1 for e in entries)
    assert all(e.next_attempt_at == NOW + timedelta(seconds=5) for e in entries)
    assert "422" in entries[0].last_error


def test_entree_refusee_seule_ne_bloque_plus_la_file():
    queue = OfflineQueue(backoff_base_seconds=5, max_batch_size=10)
    poison, healthy = make_submission(), make_submission()
    queue.enqueue(poison)
    queue.enqueue(healthy)
    send = rejecting_send(poison.offline_id)
    queue.drain(send, now=NOW)

    later = NOW + timedelta(seconds=5)
    isolated = queue.drain(send, now=later)
    rest = queue.drain(send, now=later)

    assert isolated.rejected == 1
    assert isolated.outcomes == {"rejected": 1}
    assert rest.confirmed == 1
    assert queue.pending(now=later + timedelta(hours=1)) == []
    by_id = {e.offline_id: e for e in queue.storage.entries()}
    assert by_id[poison.offline_id].outcome == "rejected"
    assert by_id[poison.offline_id].confirmed is True
    assert by_id[healthy.offline_id].outcome == "confirmed"


def test_entree_refusee_jamais_renvoyee():
    queue = OfflineQueue()
    poison = make_submission()
    queue.enqueue(poison)
    send = rejecting_send(poison.offline_id)

    report = queue.drain(send, now=NOW)
    queue.drain(send, now=NOW + timedelta(hours=1))

    assert report.rejected == 1
    assert len(send.calls) == 1


def test_drain_respecte_la_taille_de_batch():
    queue = OfflineQueue(max_batch_size=2)
    for _ in range(5):
        queue.enqueue(make_submission())
    send = respond_with()

    report = queue.drain(send, now=NOW)

    assert report.sent == 2
    assert len(send.calls[0]) == 2
    assert queue.status(now=NOW)["pending"] == 3


# ============================================================
# purge_confirmed
# ============================================================

def test_purge_des_entrees_confirmees_anciennes():
    queue = OfflineQueue()
    queue.enqueue(make_submission())
    queue.drain(respond_with(), now=NOW)
    queue.enqueue(make_submission())

    assert queue.purge_confirmed(older_than_days=7, now=NOW + timedelta(days=1)) == 0
    assert queue.purge_confirmed(older_than_days=7, now=NOW + timedelta(days=8)) == 1
    assert queue.status(now=NOW)["total"] == 1


# ============================================================
# SqliteQueueStorage
# ============================================================

def test_file_sqlite_survit_au_redemarrage(tmp_path):
    url = f"sqlite:///{tmp_path / 'queue.db'}"
    storage = SqliteQueueStorage(url)
    queue = OfflineQueue(storage)
    submission = make_submission(method="geolocation", token_uid=None, latitude=48.86, longitude=2.33, accuracy=8)
    queue.enqueue(submission)
    queue.drain(failing_send, now=NOW)
    storage.close()

    reopened = SqliteQueueStorage(url)
    entries = reopened.entries()
    reopened.close()

    assert len(entries) == 1
    assert entries[0].submission == submission
    assert entries[0].attempts == 1
    assert entries[0].confirmed is False


def test_file_sqlite_confirmation_et_purge(tmp_path):
    storage = SqliteQueueStorage(f"sqlite:///{tmp_path / 'queue.db'}")
    queue = OfflineQueue(storage)
    queue.enqueue(make_submission())
    queue.enqueue(make_submission())
    queue.drain(respond_with(), now=NOW)

    assert queue.status(now=NOW) == {"total": 2, "confirmed": 2, "pending": 0, "waiting_backoff": 0}
    assert queue.purge_confirmed(older_than_days=1, now=NOW + timedelta(days=2)) == 2
    assert storage.entries() == []
    storage.close()


# ============================================================
# SyncClient
# ============================================================

def make_client(handler) -> SyncClient:
    transport = httpx.MockTransport(handler)
    return SyncClient(device_id="tablet-01", client=httpx.Client(transport=transport, base_url="http://api"))


def test_client_envoie_le_batch():
    submission = make_submission()
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = request.read()
        return httpx.Response(200, json={
            "results": [{"offline_id": str(submission.offline_id), "outcome": "confirmed"}],
            "total_received": 1,
            "total_confirmed": 1,
            "total_already_processed": 0,
            "total_conflicts": 0,
            "total_rejected": 0,
        })

    response = make_client(handler).send([submission])

    assert seen["path"] == SYNC_PATH
    assert b"tablet-01" in seen["body"]
    assert response.total_confirmed == 1


def test_client_erreur_serveur_transport():
    with pytest.raises(SyncTransportError):
        make_client(lambda request: httpx.Response(503)).send([make_submission()])


def test_client_reseau_indisponible():
    def handler(request):
        raise httpx.ConnectError("connexion refusée", request=request)

    with pytest.raises(SyncTransportError):
        make_client(handler).send([make_submission()])


def test_client_batch_refuse():
    client = make_client(lambda request: httpx.Response(422, json={"detail": [{"msg": "invalide"}]}))

    with pytest.raises(SyncRequestRejected) as exc_info:
        client.send([make_submission()])

    assert exc_info.value.status_code == 422


def test_client_batch_refuse_corps_non_objet():
    """Un corps JSON qui n'est pas un objet est gardé tel quel comme détail."""
    client = make_client(lambda request: httpx.Response(400, json=["invalide"]))

    with pytest.raises(SyncRequestRejected) as exc_info:
        client.send([make_submission()])

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == ["invalide"]


def test_client_batch_refuse_corps_texte():
    client = make_client(lambda request: httpx.Response(413, text="trop gros"))

    with pytest.raises(SyncRequestRejected) as exc_info:
        client.send([make_submission()])

    assert exc_info.value.detail == "trop gros"


# ============================================================
# Parcours complet : file → API → base
# ============================================================

def test_parcours_complet_hors_ligne(db_client, make_event, subject_id):
    event = make_event(participants=[subject_id])
    entered = datetime.now(timezone.utc) - timedelta(hours=2)
    queue = OfflineQueue()
    check_in = make_submission(event_id=event.id, subject_id=subject_id, timestamp=entered)
    check_out = make_submission(
        event_id=event.id, subject_id=subject_id, timestamp=entered + timedelta(minutes=50), action="check_out"
    )
    queue.enqueue(check_out)
    queue.enqueue(check_in)
    sync_client = SyncClient(device_id="tablet-01", client=db_client)

    report = queue.drain(sync_client.send)
    replay = sync_client.send([check_in, check_out])

    assert report.outcomes == {"confirmed": 2}
    assert replay.total_already_processed == 2
    records = db_client.get(f"/api/v1/events/{event.id}/attendance").json()
    assert len(records) == 1
    assert records[0]["duration_seconds"] == 50 * 60
