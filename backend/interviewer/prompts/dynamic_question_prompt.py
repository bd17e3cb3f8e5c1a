def build_dynamic_question_prompt(context: dict) -> str:
    asked = context.get("asked_questions") or []
    asked_block = "\n".join(f"{i + 1}. {q}" for i, q in enumerate(asked)) or "None yet."
    responses_block = "\n".join(context.get("candidate_utterances") or []) or "No responses captured."
    tags = ", ".join(context.get("tags") or []) or "None"

    return f"""
You are an expert interviewer conducting a {context.get("category") or "professional"} interview for the position: {context.get("role") or "the open role"}.

Interview context:
- Template: {context.get("title") or "Untitled"}
- Description: {context.get("description") or "Not provided"}
- Category: {context.get("category") or "General"}
- Difficulty: {context.get("difficulty") or "Intermediate"}
- Tags: {tags}
- Persona instructions: {context.get("instructions") or "Be professional and thorough"}

Already asked questions:
{asked_block}

Recent candidate responses:
{responses_block}

Rules:
- Ask ONE follow-up question that builds on the candidate's previous responses.
- Match the interview category and difficulty level.
- Do NOT repeat any of the already asked questions.
- Make it specific to the {context.get("role") or "open"} role.
- Keep the question concise and clear.
- Focus on skills, experience, or cultural fit.

Return only the question text, nothing else.
""".strip()
