"""blankslate - Site blocking with weekly schedules and daily time budgets."""

__version__ = "0.1.0"
