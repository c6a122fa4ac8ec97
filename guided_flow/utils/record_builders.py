"""
Record Builders - Final record payloads for completed flows

Each builder takes the effective answers of a completed run and returns
the record inserted into the remote record store. Builders are looked
up by name from a flow's completion spec.
"""

from typing import Any, Callable, Dict, Optional

from guided_flow.utils.helpers import utc_now_iso


QURAN_MARKERS = ("quran", "tajweed")

# learning_priority -> methodology alignment
ALIGNMENT_BY_PRIORITY = {
    'understanding_first': 'strong',
    'fluency_first': 'strong',
    'balanced': 'moderate',
    'guidance_needed': 'moderate',
}


def _first_tag(value: Any) -> str:
    """First tag in sorted order ('' if none)."""
    if isinstance(value, (set, frozenset, list, tuple)) and value:
        return sorted(value)[0]
    return ""


def _plain(value: Any) -> Any:
    """JSON-safe copy of an answer value (tag sets become sorted lists)."""
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value


def methodology_alignment(answers: Dict[str, Any]) -> str:
    """
    Derive methodology alignment from the approach stage answers.

    Returns:
        str: 'strong', 'moderate' or 'misaligned'

    Examples:
        >>> methodology_alignment({'learning_priority': 'fluency_first'})
        'strong'
        >>> methodology_alignment({'learning_priority': 'memorization_first',
        ...                        'reconsidered_approach': 'still_memorization'})
        'misaligned'
    """
    priority = answers.get('learning_priority')

    if priority == 'memorization_first':
        if answers.get('reconsidered_approach') == 'try_talbiyah':
            return 'moderate'
        return 'misaligned'

    return ALIGNMENT_BY_PRIORITY.get(priority, 'moderate')


def subject_area(answers: Dict[str, Any]) -> str:
    """Quran/Tajweed subject if one was selected, else the first subject."""
    subjects = sorted(answers.get('selected_subjects') or ())

    for subject in subjects:
        if any(marker in subject.lower() for marker in QURAN_MARKERS):
            return subject

    return subjects[0] if subjects else answers.get('primary_subject', '')


def build_diagnostic_assessment(answers: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
    """
    Build the diagnostic assessment record for the questionnaire.

    Backward-compatible single-value fields (primary_subject,
    learning_style) are filled from the multi-select answers.
    """
    responses = {key: _plain(value) for key, value in answers.items()}

    responses['primary_subject'] = (
        _first_tag(answers.get('selected_subjects')) or answers.get('primary_subject', '')
    )
    responses['learning_style'] = (
        _first_tag(answers.get('learning_styles')) or answers.get('learning_style', '')
    )

    return {
        'student_id': user_id,
        'pre_assessment_responses': responses,
        'methodology_alignment': methodology_alignment(answers),
        'status': 'questionnaire_complete',
        'subject_area': subject_area(answers),
        'questionnaire_completed_at': utc_now_iso(),
    }


def build_explore_progress(answers: Dict[str, Any], user_id: Optional[str]) -> Dict[str, Any]:
    """Journey summary stored when the explore journey is completed."""
    axioms = sorted(answers.get('agreed_axioms') or ())

    return {
        'user_id': user_id,
        'agreed_axioms': axioms,
        'verified_count': len(axioms),
        'conviction': answers.get('conviction'),
        'next_step': answers.get('next_step'),
        'completed_at': utc_now_iso(),
    }


RECORD_BUILDERS: Dict[str, Callable[[Dict[str, Any], Optional[str]], Dict[str, Any]]] = {
    'diagnostic_assessment': build_diagnostic_assessment,
    'explore_progress': build_explore_progress,
}
