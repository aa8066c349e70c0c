"""Monthly professional report computed over both appointment sources"""

import logging
from collections import OrderedDict

from .repository import AppointmentFilter, AppointmentRepository
from .schemas import AppointmentStatus, DailyStats, MonthlyReport
from .time_calculator import month_bounds

logger = logging.getLogger(__name__)


def build_monthly_report(repository: AppointmentRepository, professional_id: str, year: int, month: int) -> MonthlyReport:
    first, last = month_bounds(year, month)
    listing = repository.list_appointments(
        AppointmentFilter(professional_id=professional_id, date_from=first, date_to=last)
    )

    report = MonthlyReport(year=year, month=month, warnings=listing.warnings)
    patients = set()
    daily: "OrderedDict[str, DailyStats]" = OrderedDict()

    for appointment in listing.appointments:
        report.totalSessions += 1
        day = daily.setdefault(appointment.date.isoformat(), DailyStats(date=appointment.date))
        day.sessions += 1

        if appointment.status == AppointmentStatus.COMPLETED:
            report.completedSessions += 1
            report.revenueMinorUnits += appointment.price_minor_units
            day.revenueMinorUnits += appointment.price_minor_units
        elif appointment.status == AppointmentStatus.CANCELLED:
            report.cancelledSessions += 1

        # Off-platform patients have no id; count them by email or name
        patients.add(appointment.patient_id or appointment.patient_email or appointment.patient_name)

    report.uniquePatients = len(patients)
    if report.completedSessions:
        report.averageSessionPriceMinorUnits = report.revenueMinorUnits // report.completedSessions
    if report.totalSessions:
        report.cancellationRate = round(report.cancelledSessions / report.totalSessions * 100, 2)
    # Listing is already in (date, time) order
    report.dailyStats = list(daily.values())

    logger.info(
        f"📊 Monthly report {year}-{month:02d} for professional {professional_id}: "
        f"{report.totalSessions} sessions, {report.completedSessions} completed"
    )
    return report
