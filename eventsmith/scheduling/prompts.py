"""Prompt templates for the completion-backed extraction strategies."""

from __future__ import annotations


PRIMARY_PROMPT = """Current date: {current_date}. Current time: {current_time}.

Extract calendar events from the message below.

RULES:
1. Use the current date ({current_date}) if no date is mentioned.
2. Use the current time ({current_time}) as the start if no time is mentioned.
3. If only a start time is given, the event lasts 1 hour.
4. Times without am/pm between 1 and 7 mean the afternoon (3:30 -> 15:30).
5. Dates are YYYY-MM-DD, times are HH:MM in 24-hour form.

MULTIPLE EVENTS:
Activities joined by "then", "afterwards", "and then", "continued" or
separated by several time ranges are separate events. When a break or
buffer ("break of 5 minutes", "puffer") is mentioned between two
activities, add it as its own event running from the end of the previous
activity for the stated duration.

Example: "3:30-6:00 programming for uni and break of 5 minutes afterwards 6:05-6:50 grind more"
-> three events: 15:30-18:00 "Programming for uni", 18:00-18:05 "Break",
18:05-18:50 "Grind more".

Return ONLY JSON. For one event:
{{
  "multiple_events": false,
  "event_title": "Clear event title",
  "date": "YYYY-MM-DD",
  "start_time": "HH:MM",
  "end_time": "HH:MM",
  "description": "",
  "location": ""
}}

For several events:
{{
  "multiple_events": true,
  "events": [
    {{
      "event_title": "Event title",
      "date": "YYYY-MM-DD",
      "start_time": "HH:MM",
      "end_time": "HH:MM",
      "description": "",
      "location": ""
    }}
  ]
}}

Message: "{message}"
"""


SIMPLE_PROMPT = """Extract calendar event details from this message: "{message}"

Return ONLY valid JSON with this exact structure:
{{
  "multiple_events": false,
  "event_title": "Clear event title",
  "date": "{current_date}",
  "start_time": "HH:MM",
  "end_time": "HH:MM",
  "description": "",
  "location": ""
}}

Current date: {current_date}, current time: {current_time}"""


STRUCTURED_PROMPT = """You are a calendar event parser. Extract event details from: "{message}"

RULES:
1. Return ONLY valid JSON, no other text
2. Use current date {current_date} if no date is mentioned
3. Use current time {current_time} as the start if no time is mentioned
4. Add 1 hour if only a start time is given

REQUIRED FIELDS: event_title, date, start_time, end_time

FORMAT:
{{
  "multiple_events": false,
  "event_title": "Event title",
  "date": "YYYY-MM-DD",
  "start_time": "HH:MM",
  "end_time": "HH:MM",
  "description": "",
  "location": "",
  "time_range": ""
}}"""


UPDATE_PROMPT = """Current date: {current_date}. Current time: {current_time}.

The message below changes an existing calendar event. Report ONLY what it
changes. Every field the message does not mention must be null. Never
fill in the current date or time for a field the message leaves out.

Examples:
"rename it to Doctor" -> event_title "Doctor", everything else null
"move my 2pm to 3pm" -> start_time "15:00", everything else null
"make it 2 hours long" -> duration "2 hours", everything else null

Return ONLY JSON:
{{
  "event_title": null,
  "date": null,
  "start_time": null,
  "end_time": null,
  "duration": null,
  "location": null,
  "description": null
}}

Message: "{message}"
"""


def build_prompt(template: str, message: str, current_date: str, current_time: str) -> str:
    # Double quotes in the message would end the quoted literal early
    safe_message = message.replace('"', "'")
    return template.format(
        message=safe_message,
        current_date=current_date,
        current_time=current_time,
    )
