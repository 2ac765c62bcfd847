"""
Printing subsystem for Scribe Printer.

- jobs: print_jobs persistence, atomic claim and acknowledgement
- dispatch: the printer-facing claim/ack protocol (credentials, last_seen)
- producer: member-facing job submission
- render: list snapshots and Pillow rendering for ESC/POS printers
- agent: the polling consumer that prints on an ESC/POS printer
"""
