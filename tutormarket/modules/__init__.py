"""Domain modules package."""

from tutormarket.modules.audit import models as audit_models  # noqa: F401
from tutormarket.modules.billing import models as billing_models  # noqa: F401
from tutormarket.modules.booking import models as booking_models  # noqa: F401
from tutormarket.modules.identity import models as identity_models  # noqa: F401
from tutormarket.modules.scheduling import models as scheduling_models  # noqa: F401
from tutormarket.modules.tutors import models as tutors_models  # noqa: F401
