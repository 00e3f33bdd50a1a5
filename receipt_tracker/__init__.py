"""Top-level package for the Receipt Tracker.

The primary modules are:

* ``store`` – the transaction store and its JSON persistence
* ``budget_rules`` – period totals, the 50/30/20 rule and budget alerts
* ``workflow`` – the receipt scanning state machine
* ``gateway`` – the AI service boundary (receipt extraction and advice)
* ``tracker`` – the facade the Streamlit app talks to
* ``dashboard`` – the Streamlit app that ties everything together

To run the dashboard from the command line you can execute:

```bash
streamlit run receipt_tracker/Home.py
```

or use ``run_dashboard.py`` in the project root.
"""

from . import budget_rules  # noqa: F401  # re-exported for convenience
from . import store  # noqa: F401  # re-exported for convenience
from .tracker import ExpenseTracker, Notification

__all__ = ["budget_rules", "store", "ExpenseTracker", "Notification"]
