"""
Client service layer for the TaskFlow project-management app.

This package wraps the hosted platform (Firebase Authentication, Cloud
Firestore and Cloud Messaging) behind narrow ports and provides the project
store, the invitation/notification coordinator and a FastAPI facade the
presentation layer can call.
"""
