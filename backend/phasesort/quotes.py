"""Static quote set used to grade placements.

Read-only: nothing in the server mutates it.
"""
from collections import namedtuple

PHASES = ('preparation', 'incubation', 'illumination', 'verification')

Quote = namedtuple('Quote', ['id', 'text', 'author', 'phase'])

QUOTES = (
    Quote('q1', 'Creativity is intelligence having fun.', 'Albert Einstein', 'illumination'),
    Quote('q2', 'You can’t use up creativity. The more you use, the more you have.', 'Maya Angelou', 'preparation'),
    Quote('q3', 'The best way to have a good idea is to have a lot of ideas.', 'Linus Pauling', 'preparation'),
    Quote('q4', 'Sleep on a problem; the subconscious mind will work on it.', 'Unknown', 'incubation'),
    Quote('q5', 'That flash of insight is the reward of patient exploration.', 'Jonas Salk', 'illumination'),
    Quote('q6', 'Verification is the courage to test what you imagine.', 'Grace Hopper', 'verification'),
    Quote('q7', 'Great ideas often need a quiet place to grow.', 'Unknown', 'incubation'),
    Quote('q8', 'Draft, test, iterate: the loop that sharpens creativity.', 'IDEO Principle', 'verification'),
    Quote('q9', 'Collect widely; curiosity is a muscle.', 'Austin Kleon', 'preparation'),
    Quote('q10', 'Illumination favors the prepared mind.', 'Louis Pasteur', 'illumination'),
    Quote('q11', 'Let time be your collaborator.', 'Paul Arden', 'incubation'),
    Quote('q12', 'Measure twice, cut once.', 'Craft Proverb', 'verification'),
)

_CORRECT_PHASE = {q.id: q.phase for q in QUOTES}


def correct_phase(quote_id):
    """Return the phase a quote belongs to, or None for an unknown id."""
    return _CORRECT_PHASE.get(quote_id)
