"""Final exams: scheduling, timed sessions and deadline auto-submit."""
