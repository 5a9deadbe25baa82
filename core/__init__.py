"""core/ -- Kernel: settings, domain models, results, errors, events and the clock."""
