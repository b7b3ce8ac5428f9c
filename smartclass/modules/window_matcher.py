"""
Window Matcher Module - Smart Class QR Scheduler

Finds the weekly class schedules that start within a lookahead window of a
given instant. Schedules carry a weekday name and "HH:MM" wall-clock times
with no date, so matching works on time-of-day strings.

Known limitation of the default comparison: when now + lookahead crosses
midnight the target time wraps to a small value ("00:08") while the weekday
has not advanced, so classes starting between now and midnight are never
matched on that tick. Passing wrap_midnight=True switches to minute-of-week
arithmetic, which matches across midnight and across the Sunday/Monday week
boundary.

The same time-of-day comparison answers which classrooms are occupied right
now, for the door display.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from smartclass.modules.models import DAYS_OF_WEEK, ClassSchedule, ClassroomStatus, ScheduleSnapshot

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY


def time_of_day(moment: datetime) -> str:
    """Format an instant as "HH:MM". Seconds are truncated, not rounded."""
    return moment.strftime('%H:%M')


def weekday_name(moment: datetime) -> str:
    return DAYS_OF_WEEK[moment.weekday()]


def parse_time_of_day(value: str) -> Optional[int]:
    """Convert "HH:MM" to minutes after midnight, or None if malformed."""
    try:
        hours, minutes = value.split(':')
        if len(hours) != 2 or len(minutes) != 2:
            return None
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        return None

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def minute_of_week(day: str, value: str) -> Optional[int]:
    """Absolute minute within the week (Monday 00:00 = 0), or None if invalid."""
    if day not in DAYS_OF_WEEK:
        return None
    minutes = parse_time_of_day(value)
    if minutes is None:
        return None
    return DAYS_OF_WEEK.index(day) * MINUTES_PER_DAY + minutes


def _moment_minute_of_week(moment: datetime) -> int:
    return moment.weekday() * MINUTES_PER_DAY + moment.hour * 60 + moment.minute


def match_upcoming_classes(now: datetime, lookahead: timedelta,
                           schedules: Iterable[ClassSchedule],
                           wrap_midnight: bool = False) -> List[ClassSchedule]:
    """
    Return the schedules starting within [now, now + lookahead].

    Both ends are inclusive at minute resolution. The result keeps the input
    order. The function has no side effects.

    Args:
        now: Current local wall-clock instant
        lookahead: Width of the window ahead of now
        schedules: Candidate schedules
        wrap_midnight: Use day-aware minute-of-week comparison instead of
            same-day string comparison

    Returns:
        List[ClassSchedule]: Matching schedules
    """
    if wrap_midnight:
        return _match_minute_of_week(now, lookahead, schedules)

    current_day = weekday_name(now)
    current_time = time_of_day(now)
    target_time = time_of_day(now + lookahead)

    return [
        schedule for schedule in schedules
        if schedule.day == current_day
        and current_time <= schedule.start_time <= target_time
    ]


def _match_minute_of_week(now: datetime, lookahead: timedelta,
                          schedules: Iterable[ClassSchedule]) -> List[ClassSchedule]:
    current = _moment_minute_of_week(now)
    if lookahead >= timedelta(weeks=1):
        span = MINUTES_PER_WEEK
    else:
        span = (_moment_minute_of_week(now + lookahead) - current) % MINUTES_PER_WEEK

    matches = []
    for schedule in schedules:
        start = minute_of_week(schedule.day, schedule.start_time)
        if start is None:
            continue
        if (start - current) % MINUTES_PER_WEEK <= span:
            matches.append(schedule)
    return matches


def occurrence_bounds(schedule: ClassSchedule, now: datetime) -> Optional[Tuple[datetime, datetime]]:
    """
    Concrete start and end datetimes of the next occurrence of a schedule.

    The occurrence is the first one starting at or after the minute of now.
    An end time that is not after the start time yields a one-minute
    occurrence. Returns None when the schedule's day or times are malformed.
    """
    start = minute_of_week(schedule.day, schedule.start_time)
    start_of_day = parse_time_of_day(schedule.start_time)
    end_of_day = parse_time_of_day(schedule.end_time)
    if start is None or end_of_day is None:
        return None

    floor = now.replace(second=0, microsecond=0)
    offset = (start - _moment_minute_of_week(floor)) % MINUTES_PER_WEEK
    starts_at = floor + timedelta(minutes=offset)

    duration = end_of_day - start_of_day
    if duration <= 0:
        duration = 1
    return starts_at, starts_at + timedelta(minutes=duration)


def current_occupancy(now: datetime, snapshot: ScheduleSnapshot) -> List[ClassroomStatus]:
    """
    Which classrooms have a class in progress at now.

    A class occupies its room from start_time inclusive to end_time
    exclusive on its own weekday. When schedules overlap in one room the
    first in snapshot order wins. Classrooms keep snapshot order.
    """
    current_day = weekday_name(now)
    current_time = time_of_day(now)

    in_progress = {}
    for schedule in snapshot.schedules:
        if (schedule.day == current_day
                and schedule.start_time <= current_time < schedule.end_time):
            in_progress.setdefault(schedule.classroom_id, schedule)

    statuses = []
    for classroom in snapshot.classrooms.values():
        schedule = in_progress.get(classroom.id)
        professor = snapshot.professor(schedule.professor_id) if schedule else None
        statuses.append(ClassroomStatus(classroom=classroom, schedule=schedule, professor=professor))
    return statuses
