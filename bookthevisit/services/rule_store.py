"""Read access to the schedule rows the availability resolver works from.

Every query is scoped to a single provider. Database failures surface as
``StoreUnavailable`` so callers can tell "could not check" apart from
"nothing configured".
"""

from datetime import date, datetime

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookthevisit.core.errors import ProviderNotFound, StoreUnavailable
from bookthevisit.models.appointment import BOOKED, Appointment
from bookthevisit.models.availability import AvailabilityOverride, WeeklyAvailabilityRule
from bookthevisit.models.provider import Provider
from bookthevisit.models.time_off import TimeOffEntry


class ScheduleRuleStore:
    def __init__(self, db: Session):
        self.db = db

    def get_provider(self, provider_id: int) -> Provider:
        try:
            provider = self.db.query(Provider).filter(
                Provider.id == provider_id,
                Provider.is_active.is_(True),
            ).first()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

        if provider is None:
            raise ProviderNotFound()
        return provider

    def get_weekly_rules(self, provider_id: int, day_of_week: int) -> list[WeeklyAvailabilityRule]:
        try:
            return self.db.query(WeeklyAvailabilityRule).filter(
                WeeklyAvailabilityRule.provider_id == provider_id,
                WeeklyAvailabilityRule.day_of_week == day_of_week,
                WeeklyAvailabilityRule.is_active.is_(True),
            ).order_by(WeeklyAvailabilityRule.start_time.asc()).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

    def get_time_off(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        off_date: date | None = None,
    ) -> list[TimeOffEntry]:
        """Rows dated ``off_date`` or whose instant range overlaps the window."""
        overlaps_window = and_(
            TimeOffEntry.start_time.is_not(None),
            TimeOffEntry.end_time.is_not(None),
            TimeOffEntry.start_time <= window_end,
            TimeOffEntry.end_time > window_start,
        )
        matches = overlaps_window if off_date is None else or_(TimeOffEntry.off_date == off_date, overlaps_window)

        try:
            return self.db.query(TimeOffEntry).filter(
                TimeOffEntry.provider_id == provider_id,
                matches,
            ).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

    def get_overrides(self, provider_id: int) -> list[AvailabilityOverride]:
        try:
            return self.db.query(AvailabilityOverride).filter(
                AvailabilityOverride.provider_id == provider_id,
                AvailabilityOverride.is_active.is_(True),
            ).order_by(AvailabilityOverride.start_time.asc()).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc

    def get_booked_appointments(
        self,
        provider_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[Appointment]:
        filters = [
            Appointment.provider_id == provider_id,
            Appointment.status == BOOKED,
            Appointment.start_time <= window_end,
            Appointment.end_time > window_start,
        ]
        if exclude_appointment_id is not None:
            filters.append(Appointment.id != exclude_appointment_id)

        try:
            return self.db.query(Appointment).filter(*filters).order_by(Appointment.start_time.asc()).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable() from exc
