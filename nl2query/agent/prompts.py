from __future__ import annotations

import re


_FENCE_RE = re.compile(r"```(?:sql)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


def build_query_messages(prompt: str, contexts: list[str], additional_prompts: list[str]) -> list[dict[str, str]]:
    system_prompt = (
        "You are nl2query, a SQL generator. Translate the user's request into a single read-only "
        "SQL query (SELECT or WITH) that uses only the tables and columns described in the schema "
        "context. Respond with the SQL only, without explanations."
    )

    if contexts:
        context_lines = [f"[{idx}] {text}" for idx, text in enumerate(contexts, start=1)]
        system_prompt += "\n\nSchema context:\n" + "\n".join(context_lines)

    messages = [{"role": "system", "content": system_prompt}, {"role": "user", "content": prompt}]

    # Feedback arrives as (previous query, reason) pairs from the retry loop.
    for offset in range(0, len(additional_prompts), 2):
        previous = additional_prompts[offset]
        reason = additional_prompts[offset + 1] if offset + 1 < len(additional_prompts) else ""
        messages.append({"role": "assistant", "content": previous})
        messages.append(
            {
                "role": "user",
                "content": f"The previous query was rejected: {reason or 'no reason given'}. "
                "Return a corrected query.",
            }
        )
    return messages


def extract_sql(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1)
    return text.strip().rstrip(";").strip()
