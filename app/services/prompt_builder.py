# app/services/prompt_builder.py
"""
Prompts and tool schemas for every capability.

Counted capabilities get a function tool whose `questions` array is pinned to
minItems == maxItems == question_count; the gateway enforces the shape server
side. Free-form capabilities describe the JSON layout in the system prompt.
"""
from typing import Any, Dict, List

from app.models.generation_models import (
    Capability,
    RecommendationPayload,
    WeaknessPayload,
)

_JSON_ONLY = (
    "CRITICAL: respond with pure JSON only. Do not wrap the response in a markdown code block."
)


def _question_array(item_props: Dict[str, Any], count: int) -> Dict[str, Any]:
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": item_props,
            "required": list(item_props),
            "additionalProperties": False,
        },
        "minItems": count,
        "maxItems": count,
    }


def _tool(name: str, description: str, properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": list(properties),
                "additionalProperties": False,
            },
        },
    }


def quiz_tool(count: int) -> Dict[str, Any]:
    return _tool("generate_quiz_and_summary", "Create true/false (O/X) questions and a summary", {
        "questions": _question_array({
            "question": {"type": "string", "description": "True/false statement"},
            "answer": {"type": "boolean", "description": "Correct answer (true=O, false=X)"},
            "explanation": {"type": "string", "description": "Explanation"},
        }, count),
        "summary": {"type": "string", "description": "Summary of the key content"},
    })


def fill_blank_tool(count: int) -> Dict[str, Any]:
    return _tool("generate_fill_blanks", "Create fill-in-the-blank questions", {
        "questions": _question_array({
            "question": {"type": "string", "description": "Sentence with the blank shown as _____"},
            "answer": {"type": "string", "description": "Correct answer"},
            "hint": {"type": "string", "description": "Hint"},
        }, count),
    })


def multiple_choice_tool(count: int) -> Dict[str, Any]:
    return _tool("generate_multiple_choice", "Create multiple-choice questions", {
        "questions": _question_array({
            "question": {"type": "string", "description": "Question (Markdown, LaTeX allowed)"},
            "options": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 4,
                "maxItems": 4,
                "description": "Four answer options",
            },
            "correctAnswer": {"type": "integer", "minimum": 0, "maximum": 3,
                              "description": "Index of the correct option (0-3)"},
            "explanation": {"type": "string", "description": "Detailed explanation (Markdown)"},
        }, count),
    })


def short_answer_tool(count: int) -> Dict[str, Any]:
    return _tool("generate_short_answer", f"Create {count} short-answer questions", {
        "questions": _question_array({
            "question": {"type": "string", "description": "Question (Markdown)"},
            "answer": {"type": "string", "description": "Model answer (Markdown)"},
            "keywords": {"type": "array", "items": {"type": "string"},
                         "description": "3-5 key terms the answer must contain"},
            "explanation": {"type": "string", "description": "Why this matters (Markdown)"},
        }, count),
    })


TOOLS = {
    Capability.quiz: quiz_tool,
    Capability.fill_blank: fill_blank_tool,
    Capability.multiple_choice: multiple_choice_tool,
    Capability.short_answer: short_answer_tool,
}


SYSTEM_PROMPTS = {
    Capability.quiz: (
        "You are an education content expert. Analyze the given text and produce "
        "true/false (O/X) quiz questions and a summary."
    ),
    Capability.fill_blank: (
        "You are an education content expert. Analyze the given text and create concept-focused "
        "fill-in-the-blank questions. Avoid details such as times, dates, places and names; "
        "focus on key concepts, theories, principles and definitions."
    ),
    Capability.multiple_choice: (
        "You are an education expert. Analyze the given text and create multiple-choice questions "
        "with exactly four options each."
    ),
    Capability.short_answer: (
        "You are an education expert. Analyze the given text and create short-answer questions.\n\n"
        "Rules:\n"
        "1. Each question must require real understanding\n"
        "2. Model answers are 2-3 concrete sentences\n"
        "3. keywords lists 3-5 key concepts the answer must contain\n"
        "4. explanation says why this matters and in what context to understand it\n"
        "5. Use Markdown for structure\n"
        "6. Write formulas in LaTeX (e.g. $x^2$, $$a/b$$)"
    ),
    Capability.solve: (
        "You are an AI tutor who solves study problems. Find the problems in the provided text and "
        "give a detailed answer and worked solution for each.\n\n" + _JSON_ONLY + "\n\n"
        "The response must follow this JSON structure:\n"
        '{\n  "problems": [\n    {\n'
        '      "problem": "recognized problem (Markdown)",\n'
        '      "solution": "detailed answer and worked steps (Markdown)",\n'
        '      "keyPoints": "key points or extra notes (Markdown)"\n'
        "    }\n  ]\n}\n\n"
        "Rules:\n"
        "- If no problem is clearly stated, turn the key concepts of the text into problems and solve them\n"
        "- Explain each problem step by step\n"
        "- Show calculations explicitly for math problems\n"
        "- Write formulas in LaTeX ($...$ or $$...$$)"
    ),
    Capability.weakness_analysis: (
        "You are an AI analyst of learning data. Analyze the questions a student got wrong and "
        "identify weak areas.\n\n" + _JSON_ONLY + "\n\n"
        "Response format:\n"
        '{\n  "weaknesses": [\n    {\n'
        '      "category": "weak area name (e.g. arithmetic, grammar, reading)",\n'
        '      "errorCount": number of wrong answers in this category,\n'
        '      "errorRate": share of all wrong answers in percent,\n'
        '      "examples": ["example 1", "example 2"]\n'
        "    }\n  ]\n}\n\n"
        "Criteria:\n"
        "1. Classify categories from question type and content\n"
        "2. Sort by most-missed category first\n"
        "3. Include 2-3 representative examples per category"
    ),
    Capability.recommendation: (
        "You are an AI tutor who writes practice problems. Based on the student's weak areas, create "
        "targeted problems strictly within the provided PDF text.\n\n" + _JSON_ONLY + "\n\n"
        "Response format:\n"
        '{\n  "problems": [\n    {\n'
        '      "problem": "problem text (Markdown)",\n'
        '      "category": "category matching a weak area",\n'
        '      "difficulty": "easy/medium/hard",\n'
        '      "hint": "hint (Markdown)",\n'
        '      "answer": "answer (Markdown)",\n'
        '      "explanation": "detailed explanation and solution (Markdown)"\n'
        "    }\n  ]\n}\n\n"
        "Criteria:\n"
        "1. Focus on the weak areas\n"
        "2. 2-3 problems per weak category, 5-8 problems in total\n"
        "3. Increase difficulty gradually\n"
        "4. Write formulas in LaTeX ($...$ or $$...$$)"
    ),
}


def build_user_prompt(capability: Capability, payload, *, text_limit: int = 3000) -> str:
    if capability is Capability.quiz:
        return (
            f"Analyze the following text and:\n"
            f"1. Create {payload.question_count} true/false (O/X) questions\n"
            f"2. Summarize the key content in 3-5 sentences\n\n"
            f"Text:\n{payload.text}"
        )
    if capability is Capability.fill_blank:
        return (
            f"Analyze the following text and create {payload.question_count} fill-in-the-blank questions.\n\n"
            "Important rules:\n"
            "- Blank out key concepts, theories, principles and definitions\n"
            "- Do not blank out details such as times, dates, places or names\n"
            "- The questions should check whether the learner understood the concepts\n\n"
            f"Text:\n{payload.text}"
        )
    if capability is Capability.multiple_choice:
        return f"Create {payload.question_count} multiple-choice questions from the following text:\n\n{payload.text}"
    if capability is Capability.short_answer:
        return f"Create {payload.question_count} short-answer questions from the following text:\n\n{payload.text}"
    if capability is Capability.solve:
        return f"Find the problems in the following text and solve them:\n\n{payload.text}"
    if capability is Capability.weakness_analysis:
        return "Analyze these wrong answers and identify the weak areas:\n\n" + format_wrong_answers(payload)
    if capability is Capability.recommendation:
        return (
            f"Student weak areas:\n{format_weaknesses(payload)}\n\n"
            f"PDF content:\n{payload.pdf_text[:text_limit]}\n\n"
            "Create problems that help the student shore up these weak areas."
        )
    raise ValueError(f"unknown capability: {capability}")


def format_wrong_answers(payload: WeaknessPayload) -> str:
    lines: List[str] = []
    for i, wa in enumerate(payload.wrong_answers, start=1):
        lines.append(f"Question {i}: {wa.question} (type: {wa.question_type})")
    return "\n".join(lines)


def format_weaknesses(payload: RecommendationPayload) -> str:
    return "\n".join(f"- {w.category} (error rate: {w.error_rate:.1f}%)" for w in payload.weaknesses)


def build_messages(capability: Capability, payload, *, text_limit: int = 3000) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPTS[capability]},
        {"role": "user", "content": build_user_prompt(capability, payload, text_limit=text_limit)},
    ]
