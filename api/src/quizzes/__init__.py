"""Topic quizzes: immediate-feedback sessions, scoring and attempt review."""
