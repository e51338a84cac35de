"""Common utilities shared by vault session components."""
