"""Living Library — streaming Q&A over a person's published body of work."""
