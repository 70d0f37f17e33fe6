import re
from typing import List, Dict, Tuple
from core.config import settings
from core.logger import logger

class ParserError(Exception):
    """Custom exception for parser errors."""
    pass

# "?[3] Prompt" sets the question to 3 points
POINTS_PREFIX = re.compile(r'^\[(\d+)\]\s*')

def parse_text_to_questions(text: str) -> Tuple[List[Dict], List[str]]:
    return parse_lines_to_questions(text.splitlines())

def parse_lines_to_questions(lines: List[str]) -> Tuple[List[Dict], List[str]]:
    """
    Parse a plain-text question list:

        ?[2] Which are prime?
        +2
        =4
        +5

    `?` opens a question (optional `[points]`), `+` is a correct option and
    `=` a wrong one. More than one `+` makes the question multiple-choice.
    Lines without a prefix continue the previous question or option.
    """
    questions = []
    errors = []
    current_question = None
    current_question_start_line = 0

    def close_current():
        if not current_question:
            return
        try:
            validate_question(current_question, current_question_start_line)
            current_question.pop('last_item_type', None)
            current_question['kind'] = 'multiple' if sum(
                1 for o in current_question['options'] if o['is_correct']
            ) > 1 else 'single'
            questions.append(current_question)
        except ParserError as e:
            errors.append(str(e))

    for i, text in enumerate(lines, 1):
        text = text.strip()
        if not text:
            continue

        if text.startswith('?'):
            close_current()
            prompt = text[1:].strip()
            points = 1
            match = POINTS_PREFIX.match(prompt)
            if match:
                points = int(match.group(1))
                prompt = prompt[match.end():]
            current_question = {
                'prompt': prompt,
                'points': points,
                'options': [],
                'last_item_type': 'q' # 'q' for the prompt, 'o' for an option
            }
            current_question_start_line = i

        elif text.startswith(('+', '=')):
            if not current_question:
                errors.append(f"Line {i}: option before any question")
                continue
            current_question['options'].append({
                'text': text[1:].strip(),
                'is_correct': text.startswith('+'),
            })
            current_question['last_item_type'] = 'o'

        elif current_question:
            # Multiline support: append to last item
            if current_question['last_item_type'] == 'q':
                current_question['prompt'] += " " + text
            else:
                current_question['options'][-1]['text'] += " " + text
        else:
            errors.append(f"Line {i}: text outside of a question: {text[:20]}...")

    close_current()

    if not questions and not errors:
        raise ParserError("No questions found")

    logger.debug("Parsed question text", questions=len(questions), errors=len(errors))
    return questions, errors

def validate_question(q: Dict, line_num: int):
    """Ensures a question has a prompt, options, points and a correct answer."""
    if not q['prompt']:
        raise ParserError(f"Line {line_num}: empty question")

    if q['points'] < 1:
        raise ParserError(f"Line {line_num}: points must be at least 1")

    if len(q['options']) < 2:
        raise ParserError(
            f"Line {line_num}: '{q['prompt'][:20]}...' needs at least 2 options, got {len(q['options'])}"
        )

    if not any(o['is_correct'] for o in q['options']):
        raise ParserError(f"Line {line_num}: '{q['prompt'][:20]}...' has no correct option")

    if len(q['options']) > settings.MAX_OPTIONS_PER_QUESTION:
        raise ParserError(f"Line {line_num}: too many options ({len(q['options'])})")

    for opt in q['options']:
        if not opt['text']:
            raise ParserError(f"Line {line_num}: empty option")
        if len(opt['text']) > 500:
            raise ParserError(f"Line {line_num}: option '{opt['text'][:20]}...' is too long ({len(opt['text'])})")
