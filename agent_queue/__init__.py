"""SEO agent background job queue."""
