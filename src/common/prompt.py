from __future__ import annotations

from typing import Callable


Confirm = Callable[[str], bool]

AFFIRMATIVE = ("y", "yes")


def is_affirmative(answer: str) -> bool:
    return answer.strip().lower() in AFFIRMATIVE


def ask_yes_no(question: str, *, reader: Callable[[str], str] = input) -> bool:
    """Ask a yes/no question on the terminal.

    Anything other than an explicit "y"/"yes" (including EOF) counts as no.
    """
    try:
        answer = reader(f"{question} [yN] ")
    except EOFError:
        return False
    return is_affirmative(answer)


def always_yes(_question: str) -> bool:
    return True


def confirmer(*, assume_yes: bool) -> Confirm:
    return always_yes if assume_yes else ask_yes_no


__all__ = ["Confirm", "ask_yes_no", "always_yes", "confirmer", "is_affirmative"]
