"""
System-Wide Constants for MentorSync

Collection names, wire event names and field limits centralized here.
Wire names are shared with clients and must not change.
"""

from typing import Final

# =============================================================================
# COLLECTIONS
# =============================================================================
USER_COLLECTION: Final[str] = "user"
ASSESSMENT_COLLECTION: Final[str] = "assessment"
MENTORSHIP_REQUEST_COLLECTION: Final[str] = "mentorshipRequest"
ASSESSMENT_QUESTION_COLLECTION: Final[str] = "assessmentQuestion"

# Collections swept by the testing teardown.
TESTING_COLLECTIONS: Final[tuple[str, ...]] = (
    ASSESSMENT_COLLECTION,
    USER_COLLECTION,
    MENTORSHIP_REQUEST_COLLECTION,
)

# =============================================================================
# OUTBOUND EVENTS
# =============================================================================
EVENT_STATE: Final[str] = "state"
EVENT_MESSAGE: Final[str] = "message"
EVENT_DATA: Final[str] = "data"

# Transport lifecycle events
EVENT_CONNECT: Final[str] = "connect"
EVENT_DISCONNECT: Final[str] = "disconnect"

# `data` payload types
DATA_INITIAL: Final[str] = "initialData"
DATA_MENTORSHIP_REQUEST: Final[str] = "mentorshipRequest"

# =============================================================================
# INBOUND COMMANDS
# =============================================================================
CMD_CREATE_USER: Final[str] = "createUser"
CMD_UPDATE_PROFILE: Final[str] = "updateProfile"
CMD_GET_ALL_MENTORS: Final[str] = "getAllMentors"
CMD_SUBMIT_ASSESSMENT: Final[str] = "submitAssessment"
CMD_MENTORSHIP_REQUEST: Final[str] = "mentorshipRequest"
CMD_GET_USER: Final[str] = "getUser"
CMD_GET_ASSESSMENT: Final[str] = "getAssessment"
CMD_GET_QUESTIONS: Final[str] = "getAvailableAssessmentQuestions"
CMD_GET_REQUEST_BETWEEN: Final[str] = "getMentorshipRequestBetweenUsers"
CMD_SET_TESTING_VARIABLE: Final[str] = "setTestingVariable"

# =============================================================================
# FIELD LIMITS
# =============================================================================
MAX_BIO_LENGTH: Final[int] = 1000
MIN_PROFILE_ITEM_LENGTH: Final[int] = 3
MIN_NAME_LENGTH: Final[int] = 1
MAX_NAME_LENGTH: Final[int] = 64
MIN_USERNAME_LENGTH: Final[int] = 3
MAX_USERNAME_LENGTH: Final[int] = 32

# =============================================================================
# MESSAGE SUBJECTS
# =============================================================================
MESSAGE_TITLE_ERROR: Final[str] = "Error"
SUBJECT_CREATE_USER: Final[str] = "Fatal error while creating user: "
SUBJECT_UPDATE_PROFILE: Final[str] = "Error while updating profile: "
SUBJECT_GET_MENTORS: Final[str] = "Error while fetching all mentors: "
SUBJECT_ASSESSMENT: Final[str] = "Problem trying to submit assessment: "
SUBJECT_MENTORSHIP: Final[str] = "Error handling mentorship request action: "
SUBJECT_GET_USER: Final[str] = "Error while getting user: "
SUBJECT_GET_ASSESSMENT: Final[str] = "Error while getting assessment: "
SUBJECT_GET_QUESTIONS: Final[str] = "Problem while getting available assessment questions: "
SUBJECT_GET_REQUEST: Final[str] = "Error while looking up mentorship status: "
SUBJECT_TESTING: Final[str] = "Cannot set testing variable, "
NO_CALLBACK_BODY: Final[str] = "No callback was provided."
GENERIC_FAILURE_BODY: Final[str] = "Something went wrong. Please try again."

# Testing variables settable through setTestingVariable.
TESTING_VARIABLES: Final[tuple[str, ...]] = ("deleteAccountAfterDisconnect",)
