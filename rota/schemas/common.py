from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from rota.services.time_rules import as_utc

# SQLite hands back naive datetimes; everything stored is UTC.
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
