from timetabler.models.entity_snapshot import EntitySnapshotRecord  # noqa: F401
from timetabler.models.timetable import TimetableRecord  # noqa: F401
