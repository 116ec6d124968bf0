"""Course catalogue: courses, ordered topics and topic quizzes."""
