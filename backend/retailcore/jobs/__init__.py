from .base import (
    AutomationJob,
    JobContext,
    JobError,
    JobParameterError,
    JobRunResult,
    OptionSpec,
    TenantTimeout,
    UnknownJobError,
)
from .attendance import AutoClockOutJob
from .bookings import BookingReminderJob, NoShowJob
from .carts import AbandonedCartJob
from .cash_drawer import CashDrawerAutoCloseJob
from .discounts import DiscountManagementJob
from .pricing import DynamicPricingJob
from .runner import JobRunner
from .security import SuspiciousActivityJob
from .stock import LowStockAlertJob, PredictiveStockJob
from .sync import MultiBranchSyncJob


def default_jobs() -> list[AutomationJob]:
    """Every automation job, registered explicitly at startup."""
    return [
        AutoClockOutJob(),
        NoShowJob(),
        BookingReminderJob(),
        AbandonedCartJob(),
        DynamicPricingJob(),
        PredictiveStockJob(),
        MultiBranchSyncJob(),
        SuspiciousActivityJob(),
        DiscountManagementJob(),
        LowStockAlertJob(),
        CashDrawerAutoCloseJob(),
    ]


__all__ = [
    'AutomationJob', 'JobContext', 'JobError', 'JobParameterError', 'JobRunResult', 'OptionSpec',
    'TenantTimeout', 'UnknownJobError', 'JobRunner', 'default_jobs',
    'AutoClockOutJob', 'NoShowJob', 'BookingReminderJob', 'AbandonedCartJob', 'DynamicPricingJob',
    'PredictiveStockJob', 'MultiBranchSyncJob', 'SuspiciousActivityJob', 'DiscountManagementJob',
    'LowStockAlertJob', 'CashDrawerAutoCloseJob',
]
