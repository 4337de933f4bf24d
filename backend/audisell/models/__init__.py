"""Aggregate exports for model convenience imports.

Prefer importing specific models from their modules.
"""

from .broadcast import BroadcastJob, BroadcastRecipient  # noqa: F401
from .carousel import (  # noqa: F401
    Carousel,
    CarouselPublic,
    CarouselStatus,
    CreativeTone,
    SlideCountMode,
    SlideFormat,
    SlideStyle,
    Template,
    TextMode,
)
from .notification import Notification, NotificationPublic  # noqa: F401
from .plan_config import LimitPeriod, PlanConfig, PlanConfigUpdate  # noqa: F401
from .prompt import AIPrompt, AIPromptUpdate  # noqa: F401
from .settings import AdminSettings, AppSetting, FeatureFlags  # noqa: F401
from .stripe_event import StripeEvent  # noqa: F401
from .subscription import ManualSubscription, Subscription, SubscriptionPublic  # noqa: F401
from .trend_report import TrendReport  # noqa: F401
from .usage import ApiName, ApiUsage, DailyUsage, UsageAction, UsageLog  # noqa: F401
from .user import User, UserCreate, UserPublic, UserUpdate  # noqa: F401
from .verification import EmailVerification, PasswordReset  # noqa: F401
