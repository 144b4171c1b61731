from hangar.db.models.types.json_type import JSON
from hangar.db.models.types.utcdatetime import UTCDateTime


__all__ = ('JSON', 'UTCDateTime')
