"""npvm: one contract over npm, yarn, pnpm and bun, plus remote dependency analysis."""

__version__ = "0.1.0"
