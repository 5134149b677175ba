"""User-facing notices posted into Slack threads."""

PLACEHOLDER = ":hourglass_flowing_sand:..."
DRAFTING_PLACEHOLDER = "Drafting an article... :writing_hand:"

GUEST_NOT_ALLOWED = "Sorry, guest accounts cannot use this assistant."
SHARED_CHANNEL_NOT_ALLOWED = "Sorry, this assistant is not available in externally shared channels."

ANSWER_FAILED = "Something went wrong while answering.\n{error}"
ARTICLE_FAILED = "Something went wrong while drafting the article.\n{error}"

DUPLICATE_FOUND = "This article seems to cover it already: {url}"
DUPLICATE_ADDITIONAL_INFO = (
    "\n\nThe thread seems to contain information the article does not have yet:\n"
    "{bullets}\n\nPlease consider adding it to the article."
)
DRAFT_CREATED = "Created a draft: {url}"
ARTICLE_CREATED = "Created an article: {url}"
