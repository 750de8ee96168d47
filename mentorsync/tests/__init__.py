"""MentorSync test-suite."""
