from datetime import datetime

import pytest

from app.core.errors import InvalidTransition
from app.models.appointment import AppointmentStatus as S
from app.services.status import compute_status_update, is_valid_transition, should_update_last_visit

NOW = datetime(2026, 3, 2, 9, 0)


def test_confirm_sets_confirmed_at():
    assert compute_status_update(S.AGENDADO, S.CONFIRMADO, NOW) == {"status": S.CONFIRMADO, "confirmed_at": NOW}


def test_cancel_sets_cancelled_at():
    data = compute_status_update(S.CONFIRMADO, S.CANCELADO_PACIENTE, NOW)
    assert data["cancelled_at"] == NOW


@pytest.mark.parametrize("terminal", [S.FINALIZADO, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL, S.NAO_COMPARECEU])
def test_terminal_states_are_final(terminal):
    for target in S:
        assert not is_valid_transition(terminal, target)


def test_invalid_transition_carries_both_states():
    with pytest.raises(InvalidTransition) as exc:
        compute_status_update(S.FINALIZADO, S.AGENDADO, NOW)
    body = exc.value.to_dict()
    assert body["code"] == "INVALID_STATUS_TRANSITION"
    assert body["current_status"] == "FINALIZADO"
    assert body["target_status"] == "AGENDADO"


def test_confirmed_cannot_go_back_to_scheduled():
    assert not is_valid_transition(S.CONFIRMADO, S.AGENDADO)
    assert should_update_last_visit(S.FINALIZADO)
    assert not should_update_last_visit(S.CONFIRMADO)
