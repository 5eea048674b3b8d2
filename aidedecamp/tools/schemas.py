"""
Fixed parts of every completion request: the system instruction and the two
function declarations the model may call.
"""

LOG_EVENT = "logEvent"
RETRIEVE_EVENTS = "retrieveEvents"

EVENT_TYPE_NAMES = ["meal", "workout", "expense"]
AGGREGATIONS = ["sum", "average", "count", "details"]
DEFAULT_RETRIEVE_LIMIT = 100

SYSTEM_PROMPT = """\
You are a helpful assistant for matters related to health, fitness, nutrition, and finances. \
You offer practical advice on the aforementioned domains and ONLY when the user requests, \
you call the provided function to log a meal, workout, or expense.

CRITICAL RULES FOR LOGGING:
- NEVER re-log items that have already been logged in this conversation
- Only log NEW items explicitly mentioned in the CURRENT user message
- If a user mentions a price for something already logged, only log the expense, NOT the item again
- Each function call should represent ONE unique event that hasn't been logged yet
- When in doubt, ask for clarification rather than logging duplicates

GENERAL RULES
- Always include "event_type", "date", and "hour" in the function arguments. Use your best guess; \
the client overwrites date/hour with the device's time.
- Keep arguments strictly JSON primitives (strings/numbers). Put units or assumptions in "comments". \
Prefer whole numbers where reasonable.
- If information is missing, infer sensible defaults rather than asking follow-up questions.

MEALS
- Parse everyday descriptions like "two fried eggs and 250ml of coke".
- Estimate numeric values for: calories (kcal), proteins (g), fat (g), carbs (g).
- Convert quantities (e.g. 250ml soda, two eggs, 100g chicken). Place assumptions in "comments".

WORKOUTS
- "I trained chest at the horizontal bench, did 4 sets of 12 reps each. I struggled with the last set." becomes
  event_type "workout", workout "chest", exercise "horizontal bench", sets 4, reps 12,
  comments "I struggled with the last set."
- Include weight when given ("an average weight of 80kg" -> weight 80).
- Muscle group or workout type goes to "workout"; equipment/movement goes to "exercise".
- If multiple exercises are mentioned, prefer the primary one and put extras into "comments".

EXPENSES
- "I just spent 40 euros on a meal and a drink in the city." becomes
  event_type "expense", category "outgoing", value 40, currency "EUR", comments "meal and drink in the city"
- Map currency words/symbols to ISO codes (euros -> EUR, $ -> USD, lei -> RON, pounds -> GBP).
- Default category to "outgoing" unless the user indicates another (e.g. "income", "refund").

RETRIEVAL RULES
- When users ask about their logged data, use the retrieveEvents function.
- Convert natural language dates to YYYY-MM-DD ("today", "yesterday", "this week", "last month").
- Choose the aggregation that fits the question:
  "How many calories today?" -> aggregation "sum", event_type "meal"
  "Show me my workouts this week" -> aggregation "details", event_type "workout"
  "What's my average daily expense?" -> aggregation "average", event_type "expense"
- Never retrieve the same data twice in one conversation unless explicitly asked.
- Present data in a natural, conversational way.
- For comparisons, make multiple retrieveEvents calls with different date ranges.
"""

LOG_EVENT_TOOL = {
    "type": "function",
    "function": {
        "name": LOG_EVENT,
        "description": "Logs a meal, workout or expense via the configured webhook.",
        "parameters": {
            "type": "object",
            "properties": {
                "event_type": {"type": "string", "enum": EVENT_TYPE_NAMES},
                "date": {"type": "string", "description": "YYYY-MM-DD"},
                "hour": {"type": "string", "description": "HH:mm"},
                "calories": {"type": "number"},
                "proteins": {"type": "number"},
                "fat": {"type": "number"},
                "carbs": {"type": "number"},
                "workout": {"type": "string"},
                "exercise": {"type": "string"},
                "sets": {"type": "number"},
                "reps": {"type": "number"},
                "weight": {"type": "number"},
                "category": {"type": "string"},
                "value": {"type": "number"},
                "currency": {"type": "string"},
                "comments": {"type": "string"},
            },
            "required": ["event_type", "date", "hour"],
        },
    },
}

RETRIEVE_EVENTS_TOOL = {
    "type": "function",
    "function": {
        "name": RETRIEVE_EVENTS,
        "description": (
            "Retrieves logged meals, workouts or expenses with optional filtering and aggregation."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "event_type": {
                    "type": "string",
                    "enum": EVENT_TYPE_NAMES,
                    "description": "Optional: filter by event type",
                },
                "date_from": {
                    "type": "string",
                    "description": "Optional: start date (YYYY-MM-DD) for filtering",
                },
                "date_to": {
                    "type": "string",
                    "description": "Optional: end date (YYYY-MM-DD) for filtering",
                },
                "aggregation": {
                    "type": "string",
                    "enum": AGGREGATIONS,
                    "description": (
                        "Type of data to return: sum totals, average values, "
                        "count of entries, or full details"
                    ),
                },
                "limit": {
                    "type": "number",
                    "description": (
                        f"Optional: maximum number of records to return (default {DEFAULT_RETRIEVE_LIMIT})"
                    ),
                },
            },
            "required": [],
        },
    },
}

TOOLS = [LOG_EVENT_TOOL, RETRIEVE_EVENTS_TOOL]


def system_message() -> dict:
    return {"role": "system", "content": SYSTEM_PROMPT}
