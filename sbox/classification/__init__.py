"""Classification: categories, value models, fallback table and the classifier gateway."""
