"""Global constants for the courtkeeper application."""

# Collection names
USERS_COLLECTION = "users"
TOURNAMENTS_COLLECTION = "tournaments"
DIVISIONS_COLLECTION = "divisions"
MATCHES_COLLECTION = "matches"
SUBMISSIONS_COLLECTION = "scoreSubmissions"
POOL_RESULTS_COLLECTION = "poolResults"
NOTIFICATIONS_COLLECTION = "notifications"

# Match status
MATCH_SCHEDULED = "scheduled"
MATCH_PENDING_CONFIRMATION = "pending_confirmation"
MATCH_COMPLETED = "completed"
MATCH_DISPUTED = "disputed"
MATCH_CANCELLED = "cancelled"

# Match stage
STAGE_POOL = "pool"
STAGE_BRACKET = "bracket"

# Verification status
VERIFICATION_PENDING = "pending"
VERIFICATION_CONFIRMED = "confirmed"
VERIFICATION_DISPUTED = "disputed"
VERIFICATION_FINAL = "final"

# Score submission status
SUBMISSION_PENDING = "pending_opponent"
SUBMISSION_CONFIRMED = "confirmed"
SUBMISSION_REJECTED = "rejected"

# Entry modes
ENTRY_ANY_PLAYER = "any_player"
ENTRY_WINNER_ONLY = "winner_only"
ENTRY_ORGANIZER_ONLY = "organizer_only"
ENTRY_MODES = (ENTRY_ANY_PLAYER, ENTRY_WINNER_ONLY, ENTRY_ORGANIZER_ONLY)

# Verification methods
METHOD_AUTO_CONFIRM = "auto_confirm"
METHOD_ONE_OPPONENT = "one_opponent"
METHOD_MAJORITY = "majority"
METHOD_ORGANIZER_ONLY = "organizer_only"
VERIFICATION_METHODS = (
    METHOD_AUTO_CONFIRM,
    METHOD_ONE_OPPONENT,
    METHOD_MAJORITY,
    METHOD_ORGANIZER_ONLY,
)

# Dispute reasons
DISPUTE_REASONS = ("wrong_score", "wrong_winner", "other")

# Organizer resolution actions
RESOLVE_FINALIZE = "finalize"
RESOLVE_EDIT = "edit"
RESOLVE_VOID = "void"
RESOLVE_ACTIONS = (RESOLVE_FINALIZE, RESOLVE_EDIT, RESOLVE_VOID)

# Side slots on a match document
SIDE_A = "sideA"
SIDE_B = "sideB"
SIDE_SLOTS = (SIDE_A, SIDE_B)
TBD = "TBD"

DEFAULT_AUTO_FINALIZE_HOURS = 24
