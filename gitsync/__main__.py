# __main__.py -- Entry point for running gitsync as a module
# Copyright (C) 2026 The gitsync developers
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitsync is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Entry point for running gitsync as a module.

This module allows gitsync to be run as a Python module using the -m flag:
    python -m gitsync SOURCE TARGET
"""

from . import cli

if __name__ == "__main__":
    cli._main()
