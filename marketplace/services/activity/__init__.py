"""Human-readable activity trail."""
