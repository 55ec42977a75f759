# Import all models so relationships resolve and Base.metadata is complete
from app.db.base_class import Base  # noqa: F401
from app.db.models.job import ExtractionJob  # noqa: F401
from app.db.models.result import CallsheetResult, InvoiceResult  # noqa: F401
from app.db.models.location import CallsheetLocation  # noqa: F401
from app.db.models.usage_event import AiUsageEvent  # noqa: F401
from app.db.models.profile import Profile  # noqa: F401
from app.db.models.request_log import RequestLog  # noqa: F401
