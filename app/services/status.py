"""Transiciones de estado de un turno."""
from datetime import datetime

from app.core.errors import InvalidTransition
from app.models.appointment import AppointmentStatus as S, CANCELLED_STATUSES

VALID_TRANSITIONS: dict[S, tuple[S, ...]] = {
    S.AGENDADO: (S.CONFIRMADO, S.FINALIZADO, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL, S.NAO_COMPARECEU),
    S.CONFIRMADO: (S.FINALIZADO, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL, S.NAO_COMPARECEU),
    S.FINALIZADO: (),
    S.CANCELADO_PACIENTE: (),
    S.CANCELADO_PROFISSIONAL: (),
    S.NAO_COMPARECEU: (),
}

STATUS_LABELS = {
    S.AGENDADO: "Agendado",
    S.CONFIRMADO: "Confirmado",
    S.FINALIZADO: "Finalizado",
    S.CANCELADO_PACIENTE: "Cancelado por el paciente",
    S.CANCELADO_PROFISSIONAL: "Cancelado por el profesional",
    S.NAO_COMPARECEU: "No asistió",
}


def is_valid_transition(current: S, target: S) -> bool:
    return target in VALID_TRANSITIONS.get(current, ())


def compute_status_update(current: S, target: S, now: datetime) -> dict:
    """Campos a escribir al pasar de current a target. Lanza InvalidTransition."""
    if not is_valid_transition(current, target):
        raise InvalidTransition(
            f"No se puede pasar de {STATUS_LABELS[current]} a {STATUS_LABELS[target]}",
            current_status=current.value,
            target_status=target.value,
        )
    data: dict = {"status": target}
    if target == S.CONFIRMADO:
        data["confirmed_at"] = now
    elif target in CANCELLED_STATUSES:
        data["cancelled_at"] = now
    return data


def should_update_last_visit(target: S) -> bool:
    return target == S.FINALIZADO
