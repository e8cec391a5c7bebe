"""Job execution pipeline for the IPED worker.

One job at a time flows through lock -> run -> notify -> finalize -> unlock.
The remote lock service coordinates the fleet; the local execution slot
guards the log file handle and the current child process inside this
process. Progress observed on the tool's output is throttled before it is
forwarded to the notification endpoint.
"""
