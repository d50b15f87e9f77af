"""
Closed value sets for category / status / type columns.

Columns are declared with enum_column() so the database only ever holds the
declared values, and Python code compares against members, not loose strings.
"""
import enum

from sqlalchemy import Enum


class Category(str, enum.Enum):
    UNSIGNED = 'unsigned'
    OUTSTANDING_REQUIREMENTS = 'outstanding_requirements'


# Dispatch order when an agent asks for "any" ordinary work
CATEGORY_ORDER = [Category.UNSIGNED, Category.OUTSTANDING_REQUIREMENTS]


class CallbackStatus(str, enum.Enum):
    PENDING = 'pending'
    ASSIGNED = 'assigned'
    COMPLETED = 'completed'


class InboundStatus(str, enum.Enum):
    WAITING = 'waiting'
    ASSIGNED = 'assigned'
    CONNECTING = 'connecting'
    COMPLETED = 'completed'
    ABANDONED = 'abandoned'


class ConversionType(str, enum.Enum):
    SIGNATURE_OBTAINED = 'signature_obtained'
    REQUIREMENTS_COMPLETED = 'requirements_completed'
    SCORED_OUT = 'scored_out'
    NO_LONGER_ELIGIBLE = 'no_longer_eligible'


class CallOutcome(str, enum.Enum):
    ANSWERED = 'answered'
    CONTACTED = 'contacted'
    NO_ANSWER = 'no_answer'
    BUSY = 'busy'
    FAILED = 'failed'
    WRONG_NUMBER = 'wrong_number'
    NOT_INTERESTED = 'not_interested'
    LEFT_VOICEMAIL = 'left_voicemail'
    CALLBACK_REQUESTED = 'callback_requested'
    RESCHEDULE = 'reschedule'
    DO_NOT_CONTACT = 'do_not_contact'


# Outcomes that count as "could not reach the person"
FAILED_OUTCOMES = frozenset({CallOutcome.NO_ANSWER, CallOutcome.BUSY, CallOutcome.FAILED})

# Outcomes that count as a real conversation
SUCCESSFUL_OUTCOMES = frozenset({CallOutcome.ANSWERED, CallOutcome.CONTACTED})


class TransitionSource(str, enum.Enum):
    DISCOVERY = 'discovery'
    CONVERSION_SWEEP = 'conversion_sweep'
    CALL_OUTCOME = 'call_outcome'
    CALLBACK = 'callback'
    MANUAL = 'manual'
    EXTERNAL = 'external'


class RecoveryStatus(str, enum.Enum):
    ALREADY_LOGGED = 'already_logged'
    RECOVERED = 'recovered'
    MANUAL_REVIEW = 'manual_review'
    RECOVERY_FAILED = 'recovery_failed'


class AgentStatus(str, enum.Enum):
    AVAILABLE = 'available'
    ON_CALL = 'on_call'
    BREAK = 'break'
    OFFLINE = 'offline'


class WorkItemKind(str, enum.Enum):
    CALLBACK = 'callback'
    LEAD = 'lead'
    INBOUND = 'inbound'


def enum_column(enum_cls, **kwargs):
    """String-backed SQLAlchemy Enum that stores member values, not names."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=40,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
        **kwargs,
    )
