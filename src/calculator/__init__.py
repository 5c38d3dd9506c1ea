"""Rules evaluation engine and program calculators."""
