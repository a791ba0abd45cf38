# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Page size of the live notification feed.
NOTIFICATIONS_PAGE_SIZE = 50

# Firebase Authentication rejects passwords shorter than this.
MIN_PASSWORD_LENGTH = 6

MAX_EMAIL_LENGTH = 254
MAX_PROJECT_TITLE_LENGTH = 120
MAX_PROJECT_DESCRIPTION_LENGTH = 2000
MAX_COMMENT_LENGTH = 2000

MIN_REMINDER_DAYS = 1
MAX_REMINDER_DAYS = 30
