"""recordhistory Database - declarative base, history schema, store, rows and sessions."""
