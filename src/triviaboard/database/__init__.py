"""ORM schema for Triviaboard."""
