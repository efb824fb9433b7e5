"""Static user-facing reply texts."""

from __future__ import annotations

FORMAT_REPLY = "You can answer in text or voice. Detailed answers help me build an accurate profile."
OFFTOPIC_REPLY = "Let us keep this focused on your interview. Please answer the current question to continue."
TIMING_REPLY = (
    "Usually this takes a couple of minutes. I will send the next question as soon as I am ready. "
    "You do not need to do anything."
)
LANGUAGE_REPLY = (
    "Yes, you can answer by voice in Russian or Ukrainian. I will transcribe it and continue. "
    "Please be detailed and use real examples."
)
HELP_REPLY = (
    "Answer the current question in text or voice. Send /restart to start over or /pause to take a break."
)
CLARIFY_REPLY = (
    "Tell me about a real situation: context, what you did, decisions, trade offs, result. "
    "Here is the question again:"
)
ROUTING_FAILURE_REPLY = "Sorry, I could not process that message right now."
RATE_LIMIT_REPLY = "You are sending messages too fast. Please wait {seconds} seconds and try again."
COMPLAINT_REPLY = "Sorry about that. I will keep things short and clear from here."
SMALLTALK_REPLY = "Happy to chat, but I work best on hiring. Let us continue."

ROLE_SELECTION_PROMPT = "Hi, I am Helly. Are you looking for a job or hiring? Choose a role to continue."
CANDIDATE_ONBOARDING_REPLY = "Great. Please send your resume as a PDF or DOCX file, or paste the text here."
MANAGER_ONBOARDING_REPLY = "Great. Please send the job description as a PDF or DOCX file, or paste the text here."
DOCUMENT_RECEIVED_REPLY = "Got it. I am reading the document now."
DOCUMENT_FAILED_REPLY = "I could not read that file. Please paste the text here or send a PDF or DOCX file."
DOCUMENT_NOT_EXPECTED_REPLY = "I am not expecting a document right now. {hint}"
VOICE_FAILED_REPLY = "I could not transcribe that voice message. Please try again or type your answer."
VOICE_TOO_LONG_REPLY = "That voice message is too long. Please keep it under {seconds} seconds."
INTERVIEW_STARTED_REPLY = "Thanks. I have a few questions to understand the details."
CANDIDATE_INTERVIEW_DONE_REPLY = "Thank you, the interview is complete. I am preparing your profile now."
MANAGER_INTERVIEW_DONE_REPLY = "Thank you, the interview is complete. I am preparing the job profile now."
PAUSED_REPLY = "Paused. Send /resume when you want to continue."
RESUMED_REPLY = "Welcome back. Let us continue."
RESTARTED_REPLY = "Starting over."
MATCHING_UNAVAILABLE_REPLY = "Matching is not available right now. I will let you know when there are results."
SESSION_UNAVAILABLE_REPLY = "Sorry, I cannot open your conversation right now. Please try again in a minute."

PROFILE_FIELD_PROMPTS: dict[str, str] = {
    "location": "Which country and city are you based in? For example: Germany, Berlin.",
    "work_mode": "Which work mode do you prefer: remote, hybrid, onsite or flexible?",
    "salary": "What are your salary expectations? Include amount, currency and period, for example: 5000 EUR per month.",
    "work_format": "Is this role remote, hybrid or onsite?",
    "remote_countries": "Which countries can remote candidates work from? List them separated by commas, or say worldwide.",
    "budget": "What is the budget for this role? Include range, currency and period, for example: 6000-7500 EUR per month.",
}
PROFILE_FIELD_RETRY_REPLY = "I could not read that."
PROFILE_FIELDS_INTRO_REPLY = "A few quick details to finish your profile."
CANDIDATE_PROFILE_COMPLETE_REPLY = "Your profile is complete. I will message you when a matching role comes up."
JOB_PUBLISHED_REPLY = "The job is published. I will send you matching candidates."

MATCH_OFFER_REPLY = "I found a role that may fit you:\n\n{summary}\n\nWould you like to apply?"
MANAGER_REVIEW_REPLY = "A candidate applied to your role:\n\n{summary}\n\nWould you like to connect?"
CANDIDATE_APPLIED_REPLY = "Thanks, I sent your application to the hiring manager. I will let you know what they decide."
CANDIDATE_DECLINED_REPLY = "No problem. I will keep looking for better matches."
MANAGER_DECLINED_REPLY = "Understood. I will keep looking for other candidates."
CANDIDATE_NOT_SELECTED_REPLY = "The hiring manager decided not to move forward this time. I will keep looking."
MATCH_CLOSED_REPLY = "This match is no longer available. I will keep looking."
CONTACT_SHARED_REPLY = "You both agreed to connect. Here is the contact:\n\n{contact}"
DECISION_NOT_EXPECTED_REPLY = "There is no pending match to decide on right now. {hint}"

ROLE_KEYBOARD: dict[str, object] = {
    "inline_keyboard": [
        [
            {"text": "I am looking for a job", "callback_data": "role:candidate"},
            {"text": "I am hiring", "callback_data": "role:manager"},
        ]
    ]
}

CANDIDATE_DECISION_KEYBOARD: dict[str, object] = {
    "inline_keyboard": [
        [
            {"text": "Apply", "callback_data": "decision:accept"},
            {"text": "Skip", "callback_data": "decision:decline"},
        ]
    ]
}
MANAGER_DECISION_KEYBOARD: dict[str, object] = {
    "inline_keyboard": [
        [
            {"text": "Connect", "callback_data": "decision:accept"},
            {"text": "Decline", "callback_data": "decision:decline"},
        ]
    ]
}

STATE_HINTS: dict[str, str] = {
    "role_selection": "Please choose whether you are looking for a job or hiring.",
    "onboarding_candidate": "Please send your resume as a PDF or DOCX file, or paste the text.",
    "waiting_resume": "Please paste the full resume text, or send a PDF or DOCX file.",
    "extracting_resume": "I am still reading your resume. The first question is coming shortly.",
    "interviewing_candidate": "Please answer the current interview question.",
    "candidate_profile_ready": "Your profile is ready. I will notify you about matching roles.",
    "candidate_mandatory_fields": "Please answer the profile question above: location, work mode or salary.",
    "onboarding_manager": "Please send the job description as a PDF or DOCX file, or paste the text.",
    "waiting_job": "Please paste the full job description text, or send a PDF or DOCX file.",
    "extracting_job": "I am still reading the job description. The first question is coming shortly.",
    "interviewing_manager": "Please answer the current interview question.",
    "job_profile_ready": "The job profile is ready. I will look for matching candidates.",
    "manager_mandatory_fields": "Please answer the job question above: work format, remote countries or budget.",
    "job_published": "The job is published. I will send you matching candidates.",
    "waiting_candidate_decision": "Please review the suggested role. Send /accept to apply or /decline to skip.",
    "waiting_manager_decision": "Please review the suggested candidate. Send /accept to connect or /decline to pass.",
    "contact_shared": "Contacts have been shared. Good luck!",
}


def next_step_hint(state: str) -> str:
    return STATE_HINTS.get(state, STATE_HINTS["role_selection"])
