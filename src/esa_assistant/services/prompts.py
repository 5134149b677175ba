"""Instruction text for each generation task.

Each builder takes the current time so prompts are deterministic under test.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from esa_assistant.domain.models import ChatHistory, Document
from esa_assistant.utils.dates import DEFAULT_TIMEZONE, format_local

DOCUMENT_SEPARATOR = "\n===\n"


def _now_section(now: datetime, tz: str) -> str:
    return f"# Current date and time\n{format_local(now, tz)}\n"


def select_category_instruction(
    categories: Sequence[str], *, max_categories: int, now: datetime, tz: str = DEFAULT_TIMEZONE
) -> str:
    return f"""\
You are a search assistant for the esa knowledge base.
Identify the categories relevant to the user's question and the conversation.

{_now_section(now, tz)}
# Steps
1. Understand the user's question precisely.
2. Pick up to {max_categories} closely related categories that exist in esa.

# Output rules
* Output between 1 and {max_categories} category paths, copied exactly from the list.
* Each line of the category list holds a category path and its post count, separated by a space.
{category_section(categories)}"""


def generate_keywords_instruction(
    categories: Sequence[str],
    user_question: str,
    *,
    keyword_count: int,
    keyword_min_length: int,
    now: datetime,
    tz: str = DEFAULT_TIMEZONE,
) -> str:
    return f"""\
You are a search assistant for the esa knowledge base.
Produce search keywords relevant to the user's question and the conversation.

{_now_section(now, tz)}
# User question
```
{user_question}
```

# Steps
1. Use the conversation to understand the question correctly.
2. Generate exactly {keyword_count} keywords for an article search.

# Output rules
* Every keyword has at least {keyword_min_length} characters.
* Use words implied by the question and by the category list.
* Write alphabetic keywords in their usual spelling and casing (for example GitHub, not github).
{category_section(categories)}"""


def answer_question_instruction(
    documents: Sequence[Document], *, now: datetime, tz: str = DEFAULT_TIMEZONE
) -> str:
    return f"""\
You are an assistant that answers questions using articles from the esa knowledge sharing service.
Find the documents relevant to the question in the document list and answer with evidence.

{_now_section(now, tz)}
# Steps
1. Use the conversation to understand the question correctly.
2. Find the documents related to the question in the document list.
3. Write the answer from those documents.

# Rules
Constraints:
* Use only information contained in the document list.
* Do not add general knowledge or guesses.
* If no document is relevant, say that no document was found.

Answer requirements:
* Always show the URLs of the documents you used.
* Name the part (chapter, heading, paragraph) each statement is based on.
* When several documents are used, give the evidence per document.

Format:
* The answer is posted to Slack: keep it short, polite and easy to follow.
* Prefer paragraphs over long bullet lists.
* Write Markdown, in the language of the question.

# Document list format
* Documents are separated by ===
* title, id, tags (comma separated), url, body (Markdown), created_at, updated_at
{document_section(documents)}"""


def check_duplicate_instruction(
    documents: Sequence[Document], *, now: datetime, tz: str = DEFAULT_TIMEZONE
) -> str:
    return f"""\
You are a document management assistant for esa.
Compare a Slack conversation with the existing documents and decide whether it is already covered.

{_now_section(now, tz)}
# Steps
1. Read the conversation summary.
2. Check whether any document in the list already covers the conversation.
3. Decide on duplication and extract additional information.

# Criteria (fairly strict)
* Report a duplicate only when the main topic of the conversation is fully covered by an existing document.
* Partial overlap is not a duplicate.
* Information in the conversation that the documents lack is additional information.
* List every duplicate candidate by id.
* Summarise the reason for the decision briefly.
{document_section(documents)}"""


def generate_article_instruction(
    category: str | None, *, now: datetime, tz: str = DEFAULT_TIMEZONE
) -> str:
    instruction = f"""\
You are a writing assistant for esa.
Write an esa article from the Slack conversation.

{_now_section(now, tz)}
# Steps
1. Analyse the conversation and identify the main topic.
2. Produce the title, body and tags of the article.

# Writing rules
* Keep the title short and descriptive.
* Write the body in Markdown and organise the conversation so it reads well.
* Use a Q&A layout when the conversation is a question and its answer.
* Use numbered lists for procedures and configuration steps.
* Extract 3 to 5 tags related to the content.
"""
    if category:
        instruction += f"\n# Category\nThe article will be filed under \"{category}\".\n"
    return instruction


def category_section(categories: Sequence[str]) -> str:
    return "\n# Category list\n" + "\n".join(categories) + "\n"


def document_section(documents: Sequence[Document]) -> str:
    rendered = DOCUMENT_SEPARATOR.join(
        f"title: {d.name}\n"
        f"id: {d.number}\n"
        f"tags: {','.join(d.tags)}\n"
        f"url: {d.url}\n"
        f"body: {d.body_md}\n"
        f"created_at: {d.created_at}\n"
        f"updated_at: {d.updated_at}"
        for d in documents
    )
    return "\n# Document list\n" + rendered + "\n"


def render_conversation(conversation: Sequence[ChatHistory], separator: str = "\n") -> str:
    """``[role]: text`` per turn."""
    return separator.join(f"[{c.role}]: {c.text}" for c in conversation)
