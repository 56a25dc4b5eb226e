# Copyright (c) 2025.
# This file is part of fusion-jit, released under the MIT License.
