"""Statistical modules: data generation, model fitting and effect-size measures."""
