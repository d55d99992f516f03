"""scheduling schema: agenda, recurrencias, grupos, auditoría

Revision ID: 4b7e2c91d0a3
Revises:
Create Date: 2026-10-12 18:40:11.204519

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4b7e2c91d0a3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

APPOINTMENT_TYPE = sa.Enum('CONSULTA', 'TAREFA', 'LEMBRETE', 'NOTA', 'REUNIAO', name='appointmenttype')
APPOINTMENT_STATUS = sa.Enum('AGENDADO', 'CONFIRMADO', 'CANCELADO_PACIENTE', 'CANCELADO_PROFISSIONAL',
                             'NAO_COMPARECEU', 'FINALIZADO', name='appointmentstatus')
MODALITY = sa.Enum('PRESENCIAL', 'ONLINE', name='modality')
RECURRENCE_TYPE = sa.Enum('WEEKLY', 'BIWEEKLY', 'MONTHLY', name='recurrencetype')
RECURRENCE_END_TYPE = sa.Enum('BY_DATE', 'BY_OCCURRENCES', 'INDEFINITE', name='recurrenceendtype')


def upgrade() -> None:
    op.create_table(
        'clinics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('reminder_hours', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_clinics_name', 'clinics', ['name'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', sa.Enum('professional', 'admin', name='roleenum'), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_users_clinic_id', 'users', ['clinic_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'professionals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('specialty', sa.String(100), nullable=True),
        sa.Column('color', sa.String(16), nullable=True),
        sa.Column('appointment_duration', sa.Integer(), nullable=False),
        sa.Column('buffer_between_slots', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_professionals_clinic_id', 'professionals', ['clinic_id'])

    op.create_table(
        'patients',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('notes', sa.String(255), nullable=True),
        sa.Column('consent_whatsapp', sa.Boolean(), nullable=False),
        sa.Column('consent_email', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_visit_at', sa.DateTime(timezone=False), nullable=True),
    )
    op.create_index('ix_patients_clinic_id', 'patients', ['clinic_id'])

    op.create_table(
        'availability_rules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='ck_rule_day_of_week'),
    )
    op.create_index('ix_availability_rules_professional_id', 'availability_rules', ['professional_id'])
    op.create_index('ix_rule_professional_day', 'availability_rules', ['professional_id', 'day_of_week'])

    op.create_table(
        'availability_exceptions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=True),
        sa.Column('end_time', sa.String(5), nullable=True),
        sa.Column('reason', sa.String(500), nullable=True),
    )
    op.create_index('ix_availability_exceptions_clinic_id', 'availability_exceptions', ['clinic_id'])
    op.create_index('ix_exception_professional_date', 'availability_exceptions', ['professional_id', 'date'])
    op.create_index('ix_exception_clinic_date', 'availability_exceptions', ['clinic_id', 'date'])

    op.create_table(
        'appointment_recurrences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), nullable=False),
        sa.Column('patient_id', sa.String(36), sa.ForeignKey('patients.id'), nullable=True),
        sa.Column('modality', MODALITY, nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('recurrence_type', RECURRENCE_TYPE, nullable=False),
        sa.Column('recurrence_end_type', RECURRENCE_END_TYPE, nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('occurrences', sa.Integer(), nullable=True),
        sa.Column('last_generated_date', sa.Date(), nullable=True),
        sa.Column('exceptions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=False), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_appointment_recurrences_clinic_id', 'appointment_recurrences', ['clinic_id'])
    op.create_index('ix_appointment_recurrences_professional_id', 'appointment_recurrences', ['professional_id'])
    op.create_index('ix_appointment_recurrences_patient_id', 'appointment_recurrences', ['patient_id'])

    op.create_table(
        'therapy_groups',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('recurrence_type', RECURRENCE_TYPE, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_therapy_groups_clinic_id', 'therapy_groups', ['clinic_id'])
    op.create_index('ix_therapy_groups_professional_id', 'therapy_groups', ['professional_id'])

    op.create_table(
        'group_memberships',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('group_id', sa.String(36), sa.ForeignKey('therapy_groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('patient_id', sa.String(36), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('join_date', sa.Date(), nullable=False),
        sa.Column('leave_date', sa.Date(), nullable=True),
        sa.UniqueConstraint('group_id', 'patient_id', name='uq_group_patient'),
    )
    op.create_index('ix_group_memberships_group_id', 'group_memberships', ['group_id'])
    op.create_index('ix_group_memberships_patient_id', 'group_memberships', ['patient_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), nullable=False),
        sa.Column('patient_id', sa.String(36), sa.ForeignKey('patients.id'), nullable=True),
        sa.Column('group_id', sa.String(36), sa.ForeignKey('therapy_groups.id'), nullable=True),
        sa.Column('recurrence_id', sa.String(36),
                  sa.ForeignKey('appointment_recurrences.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', APPOINTMENT_TYPE, nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=False), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=False), nullable=False),
        sa.Column('status', APPOINTMENT_STATUS, nullable=False),
        sa.Column('modality', MODALITY, nullable=False),
        sa.Column('blocks_time', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=False), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=False), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=False), server_default=sa.func.now(), nullable=False),
    )
    for col in ('clinic_id', 'professional_id', 'patient_id', 'group_id', 'recurrence_id', 'scheduled_at', 'end_at'):
        op.create_index(f'ix_appointments_{col}', 'appointments', [col])
    # chequeo de solapamiento por profesional y rango
    op.create_index('ix_appointment_professional_time', 'appointments', ['professional_id', 'scheduled_at', 'end_at'])
    op.create_index('ix_appointment_clinic_time', 'appointments', ['clinic_id', 'scheduled_at'])

    op.create_table(
        'appointment_professionals',
        sa.Column('appointment_id', sa.String(36), sa.ForeignKey('appointments.id', ondelete='CASCADE'),
                  primary_key=True),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), primary_key=True),
        sa.UniqueConstraint('appointment_id', 'professional_id', name='uq_appointment_professional'),
    )
    op.create_index('ix_appt_prof_appointment', 'appointment_professionals', ['appointment_id'])
    op.create_index('ix_appt_prof_professional', 'appointment_professionals', ['professional_id'])

    op.create_table(
        'recurrence_professionals',
        sa.Column('recurrence_id', sa.String(36), sa.ForeignKey('appointment_recurrences.id', ondelete='CASCADE'),
                  primary_key=True),
        sa.Column('professional_id', sa.String(36), sa.ForeignKey('professionals.id'), primary_key=True),
        sa.UniqueConstraint('recurrence_id', 'professional_id', name='uq_recurrence_professional'),
    )
    op.create_index('ix_rec_prof_recurrence', 'recurrence_professionals', ['recurrence_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(64), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=False), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_logs_clinic_id', 'audit_logs', ['clinic_id'])
    op.create_index('ix_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_clinic_created', 'audit_logs', ['clinic_id', 'created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('clinic_id', sa.String(36), sa.ForeignKey('clinics.id'), nullable=False),
        sa.Column('patient_id', sa.String(36), sa.ForeignKey('patients.id'), nullable=True),
        sa.Column('appointment_id', sa.String(36), sa.ForeignKey('appointments.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('type', sa.Enum('APPOINTMENT_CONFIRMATION', 'APPOINTMENT_CANCELLATION', 'APPOINTMENT_REMINDER',
                                  name='notificationtype'), nullable=False),
        sa.Column('channel', sa.Enum('EMAIL', 'WHATSAPP', name='notificationchannel'), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'SENT', 'FAILED', name='notificationstatus'), nullable=False),
        sa.Column('failure_reason', sa.String(500), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=False), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=False), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notifications_clinic_id', 'notifications', ['clinic_id'])
    op.create_index('ix_notifications_appointment_id', 'notifications', ['appointment_id'])


def downgrade() -> None:
    # orden inverso por las FKs
    for table in (
        'notifications', 'audit_logs', 'recurrence_professionals', 'appointment_professionals',
        'appointments', 'group_memberships', 'therapy_groups', 'appointment_recurrences',
        'availability_exceptions', 'availability_rules', 'patients', 'professionals', 'users', 'clinics',
    ):
        op.drop_table(table)
