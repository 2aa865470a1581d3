"""draftly – a small Markdown blog with an offline-tolerant draft editor."""

DEFAULT_CATEGORY = "其他"
CATEGORIES = (
    "HTML",
    "CSS",
    "JavaScript",
    "React",
    "Vue",
    "Python",
    "Java",
    DEFAULT_CATEGORY,
)
