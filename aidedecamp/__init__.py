"""
aide-de-camp: a chat assistant that logs meals, workouts and expenses.

Streams replies from a chat-completion endpoint and relays the model's
function calls to a webhook.
"""

__version__ = "0.3.0"
